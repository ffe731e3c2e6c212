"""Static document produced for every conversion.

The uploaded bytes are never parsed; every job yields the same markup,
stamped with the conversion date.
"""
from datetime import date

CSS_CONTENT = """
.pdf-content {
  font-family: 'Inter', sans-serif;
  max-width: 800px;
  margin: 0 auto;
  padding: 20px;
  line-height: 1.6;
}

.pdf-content h1 {
  color: #2563eb;
  border-bottom: 2px solid #f59e0b;
  padding-bottom: 10px;
  margin-bottom: 20px;
}

.pdf-content h2 {
  color: #374151;
  margin-top: 30px;
  margin-bottom: 15px;
}

.content-section {
  background: #f9fafb;
  padding: 20px;
  border-radius: 8px;
  margin: 20px 0;
}

.footer {
  text-align: center;
  color: #6b7280;
  font-size: 0.9em;
  margin-top: 30px;
  padding-top: 20px;
  border-top: 1px solid #e5e7eb;
}
""".strip()

_BODY = """
<div class="pdf-content">
  <h1>Converted PDF Document</h1>
  <p>This document was converted from PDF to HTML using our API.</p>
  <div class="content-section">
    <h2>Document Content</h2>
    <p>Lorem ipsum dolor sit amet, consectetur adipiscing elit. Sed do eiusmod tempor incididunt ut labore et dolore magna aliqua.</p>
    <ul>
      <li>Preserved formatting and structure</li>
      <li>CSS styling maintained</li>
      <li>Images extracted and embedded</li>
    </ul>
  </div>
  <div class="footer">
    <p>Converted on {converted_on}</p>
  </div>
</div>
""".strip()

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Converted PDF</title>
  <style>{css}</style>
</head>
<body>
{body}
</body>
</html>
"""


def render_body(converted_on: date | None = None) -> str:
    day = converted_on or date.today()
    return _BODY.replace("{converted_on}", day.isoformat())


def render_document(css: str = CSS_CONTENT, converted_on: date | None = None) -> str:
    return _PAGE.format(css=css, body=render_body(converted_on))
