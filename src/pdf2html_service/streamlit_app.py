import os

import requests
import streamlit as st
import streamlit.components.v1 as components

from pdf2html_service.client import (
    ApiError,
    ConversionClient,
    ConversionFailedError,
    PollError,
    PollPolicy,
    poll_job,
)

API_BASE = os.getenv("PDF2HTML_API_BASE", os.getenv("API_BASE", "http://localhost:8080")).rstrip("/")
HISTORY_LIMIT = int(os.getenv("PDF2HTML_UI_HISTORY_LIMIT", "20"))

_STATUS_ICONS = {"completed": "✅", "failed": "❌", "processing": "⏳", "pending": "🕒"}


def _reset_state():
    for key in ["job_id", "job", "progress", "result_html", "error"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    st.session_state["upload_key"] = st.session_state.get("upload_key", 0) + 1


def _client() -> ConversionClient | None:
    token = st.session_state.get("token", "").strip()
    if not token:
        return None
    return ConversionClient(API_BASE, token)


def _track(client: ConversionClient, job_id: str) -> None:
    with st.status("Converting...", expanded=True) as status_box:
        prog_slot = st.empty()

        def on_progress(progress: int, job: dict[str, object]) -> None:
            st.session_state["progress"] = progress
            prog_slot.progress(progress, text=f"{progress}%")

        try:
            job = poll_job(client, job_id, PollPolicy(timeout=300), on_progress=on_progress)
        except ConversionFailedError as e:
            st.session_state["error"] = str(e)
            st.session_state.pop("job_id", None)
            status_box.update(label="Conversion failed", state="error")
            return
        except PollError as e:
            st.session_state["error"] = f"Status check failed: {e}"
            st.session_state.pop("job_id", None)
            status_box.update(label="Lost track of job", state="error")
            return
        st.session_state["job"] = job
        status_box.update(label="Conversion complete", state="complete")

    html_url = str(st.session_state["job"].get("htmlUrl") or "")
    try:
        st.session_state["result_html"] = client.download(html_url)
    except (requests.RequestException, ApiError) as e:
        st.session_state["error"] = f"Download failed: {e}"
        st.session_state.pop("job_id", None)


def _preview(job: dict[str, object], html: str) -> None:
    st.success(f"Converted {job.get('fileName')}")
    file_name = str(job.get("fileName") or "conversion").removesuffix(".pdf") + ".html"
    st.download_button("Download HTML", data=html.encode("utf-8"), file_name=file_name, mime="text/html")
    rendered, source, css = st.tabs(["Preview", "HTML", "CSS"])
    with rendered:
        components.html(html, height=600, scrolling=True)
    with source:
        st.code(html, language="html")
    with css:
        st.code(str(job.get("cssContent") or ""), language="css")


def _history(client: ConversionClient) -> None:
    try:
        jobs = client.history(limit=HISTORY_LIMIT)
    except (requests.RequestException, ApiError) as e:
        st.warning(f"Could not load history: {e}")
        return
    if not jobs:
        st.info("No conversions yet.")
        return
    for job in jobs:
        icon = _STATUS_ICONS.get(str(job.get("status")), "•")
        with st.expander(f"{icon} {job.get('fileName')} · {job.get('createdAt')}"):
            st.write(f"Status: {job.get('status')} ({job.get('progress')}%)")
            if job.get("htmlUrl"):
                st.markdown(f"[Open HTML]({job['htmlUrl']})")
            if job.get("errorMessage"):
                st.error(job["errorMessage"])


def main() -> None:
    st.set_page_config(page_title="PDF to HTML", page_icon="📄", layout="centered")
    st.title("📄 PDF to HTML Converter")
    st.caption(f"API base: {API_BASE}")

    with st.sidebar:
        st.text_input("API token", type="password", key="token")
        if st.button("Restart", type="secondary"):
            _reset_state()
            st.rerun()

    client = _client()
    if client is None:
        st.info("Enter an API token to start converting.")
        return

    convert_tab, history_tab = st.tabs(["Convert", "History"])
    with convert_tab:
        if "upload_key" not in st.session_state:
            st.session_state["upload_key"] = 0
        uploaded = st.file_uploader(
            "Upload a PDF",
            type=["pdf"],
            key=f"uploader-{st.session_state['upload_key']}",
        )
        if uploaded and "job_id" not in st.session_state and st.button("Start Conversion", type="primary"):
            st.session_state.pop("error", None)
            with st.spinner("Uploading..."):
                try:
                    job_id = client.convert(
                        uploaded.getvalue(),
                        file_name=uploaded.name,
                        options={"preserveImages": True, "extractCss": True, "quality": "high"},
                    )
                except (requests.RequestException, ApiError) as e:
                    st.session_state["error"] = f"Upload failed: {e}"
                    job_id = None
            if job_id:
                st.session_state["job_id"] = job_id
                _track(client, job_id)

        if "result_html" in st.session_state:
            _preview(st.session_state["job"], st.session_state["result_html"])

        if err := st.session_state.get("error"):
            st.error(err)

    with history_tab:
        _history(client)


if __name__ == "__main__":
    main()
