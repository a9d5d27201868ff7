from __future__ import annotations

import html
import json

_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>SketchShaper Authentication</title>
  <style>
    body {{
      font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
      background: {background};
      margin: 0;
      padding: 40px 20px;
      display: flex;
      align-items: center;
      justify-content: center;
      min-height: 100vh;
    }}
    .container {{
      background: white;
      border-radius: 12px;
      padding: 40px;
      box-shadow: 0 10px 25px rgba(0,0,0,0.1);
      text-align: center;
      max-width: 500px;
      width: 100%;
    }}
    h1 {{ color: {accent}; margin: 0 0 15px 0; font-size: 24px; }}
    p {{ color: #6b7280; margin: 0 0 30px 0; font-size: 16px; line-height: 1.5; }}
    .btn {{
      background: {accent};
      color: white;
      padding: 12px 24px;
      border: none;
      border-radius: 8px;
      font-size: 16px;
      cursor: pointer;
    }}
  </style>
</head>
<body>
  <div class="container">
    <h1>{title}</h1>
    <p>{message}</p>
    <button class="btn" onclick="window.close()">Close Window</button>
  </div>
  <script>
    setTimeout(function () {{ window.close(); }}, 5000);
    if (window.opener) {{
      window.opener.postMessage({event}, "*");
    }}
  </script>
</body>
</html>
"""


def render_callback_page(*, success: bool, message: str) -> str:
    status = "success" if success else "error"
    event = {"type": "patreon-auth-callback", "status": status, "message": message}
    # "</" would end the script element early.
    event_json = json.dumps(event).replace("</", "<\\/")
    return _PAGE.format(
        background="#f0f9ff" if success else "#fef2f2",
        accent="#1e40af" if success else "#dc2626",
        title="Authentication Successful!" if success else "Authentication Failed",
        message=html.escape(message),
        event=event_json,
    )
