"""Edge worker that gates sandbox previews and injects the console widget."""

from typing import Any

from burrow.core import naming
from burrow.core.types import CloudflareConfig


COMPATIBILITY_DATE = "2024-01-01"
MAIN_MODULE = "worker.js"
COOKIE_MAX_AGE = 86400

DEFAULT_WEBSOCKET_URL = "wss://localhost/cable"
DEFAULT_API_URL = "https://localhost/burrow"

_SCRIPT = """\
function parseCookies(cookieHeader) {
  const cookies = {};
  if (!cookieHeader) return cookies;
  cookieHeader.split(';').forEach(cookie => {
    const [name, ...rest] = cookie.trim().split('=');
    if (name) cookies[name] = rest.join('=');
  });
  return cookies;
}

export default {
  async fetch(request, env) {
    const url = new URL(request.url);
    const cookies = parseCookies(request.headers.get('Cookie') || '');
    const tokenParam = url.searchParams.get('token');
    const cookieToken = cookies['__COOKIE__'];

    const token = tokenParam || cookieToken;
    if (!token || token !== env.ACCESS_TOKEN) {
      return new Response('Not Found', { status: 404 });
    }

    if (tokenParam && !cookieToken) {
      url.searchParams.delete('token');
      return new Response(null, {
        status: 302,
        headers: {
          'Location': url.toString(),
          'Set-Cookie': `__COOKIE__=${token}; HttpOnly; Secure; SameSite=Strict; Path=/; Max-Age=__MAX_AGE__`
        }
      });
    }

    const response = await fetch(request);
    const ct = response.headers.get('content-type') || '';
    if (!ct.includes('text/html')) return response;

    const consoleTag = env.CONSOLE_URL ? `<script src="${env.CONSOLE_URL}" defer></script>` : '';
    return new HTMLRewriter()
      .on('body', {
        element(el) {
          el.append(`<script>
            window.BURROW_CONFIG = {
              sandboxId: '${env.SANDBOX_SLUG}',
              wsUrl: '${env.WS_URL}',
              apiUrl: '${env.API_URL}',
              token: '${token}'
            };
          </script>${consoleTag}`, { html: true });
        }
      })
      .transform(response);
  }
};
"""


def script() -> str:
    """Worker module source with the auth cookie name filled in."""
    return (
        _SCRIPT.replace("__COOKIE__", naming.AUTH_COOKIE)
        .replace("__MAX_AGE__", str(COOKIE_MAX_AGE))
    )


def bindings(slug: str, access_token: str, config: CloudflareConfig) -> list[dict[str, str]]:
    """Plain-text bindings the worker reads from ``env``."""
    values = {
        "ACCESS_TOKEN": access_token,
        "SANDBOX_SLUG": slug,
        "WS_URL": config.websocket_url or DEFAULT_WEBSOCKET_URL,
        "API_URL": config.api_url or DEFAULT_API_URL,
        "CONSOLE_URL": config.console_script_url or "",
    }
    return [{"type": "plain_text", "name": name, "text": text} for name, text in values.items()]


def metadata(slug: str, access_token: str, config: CloudflareConfig) -> dict[str, Any]:
    return {
        "main_module": MAIN_MODULE,
        "compatibility_date": COMPATIBILITY_DATE,
        "bindings": bindings(slug, access_token, config),
    }
