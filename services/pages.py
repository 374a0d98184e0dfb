"""
HTML pages for whisper sessions
"""
from html import escape

from services.response_collector import SessionView

PAGE_STYLE = """
  body{background:#0b0f14;color:#e6edf3;font-family:system-ui,Segoe UI,Roboto,Inter,sans-serif;padding:24px}
  .box{max-width:720px;margin:40px auto;padding:20px;border:1px solid #1b2633;border-radius:10px;background:#0a131d}
  textarea{width:100%;height:140px;background:#071018;color:#e6edf3;border-radius:8px;padding:10px;border:1px solid #213244}
  button{background:#122235;color:#e6edf3;border:1px solid #213244;border-radius:6px;padding:8px 12px}
"""


def _get_base_template(title: str, content: str) -> str:
    return f"""<!doctype html><html><head>
<meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1">
<title>{escape(title)}</title>
<style>{PAGE_STYLE}</style>
</head><body>
  <div class="box">
{content}
  </div>
</body></html>"""


def render_session_page(view: SessionView, solo_window_seconds: int) -> str:
    """Question, countdown and answer form"""
    token = escape(view.token, quote=True)
    content = f"""    <h3 style="text-transform:lowercase;margin:0 0 8px">dread</h3>
    <p style="margin:6px 0"><strong>question:</strong><br>{escape(view.question)}</p>
    <p style="margin:6px 0"><strong>time:</strong> <span id="t">{view.seconds_remaining}</span>s</p>
    <form method="POST" action="/respond/{token}">
      <textarea name="answer" required placeholder="answer under pressure…"></textarea>
      <div style="margin-top:12px"><button type="submit">send</button></div>
    </form>
    <p style="color:#9fb4cb;margin-top:10px">timer begins on this page (requires unlock). solo rounds are {solo_window_seconds}s from arrival even if you never open.</p>
<script>
let t={view.seconds_remaining}; const el=document.getElementById('t');
const iv=setInterval(()=>{{t--; if(t<0)t=0; el.textContent=t; if(t<=0) clearInterval(iv);}},1000);
</script>"""
    return _get_base_template("dread — whisper", content)


def render_message(message: str) -> str:
    """Single lower-case line, used for outcomes and errors"""
    content = f'    <p style="text-transform:lowercase">{escape(message)}</p>'
    return _get_base_template("dread", content)
