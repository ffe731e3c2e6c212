import argparse

from pdf2html_service.config import Settings
from pdf2html_service.conversion.adapters import LocalTokenAuth


def issue_token(argv: list[str] | None = None) -> None:
    """Issue an API token for a user and print it once."""
    ap = argparse.ArgumentParser(description="Issue a bearer token for the conversion API")
    ap.add_argument("user_id", help="user the token authenticates as")
    ap.add_argument("--tokens-file", default=None, help="token registry (default: $DATA_DIR/auth/tokens.json)")
    args = ap.parse_args(argv)

    path = args.tokens_file or Settings.from_env().tokens_path
    try:
        token = LocalTokenAuth(path).issue_token(args.user_id)
    except ValueError as e:
        ap.error(str(e))
    print(token)


if __name__ == "__main__":
    issue_token()
