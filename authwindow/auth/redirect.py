"""The redirect-target side of the message channel.

A redirect target is the page the provider sends the user back to. It
parses its own URL, separates the authorization result from application
parameters and posts ``{code, state, url}`` to the window that opened it
(a popup's opener) or embeds it (a hidden frame's parent).

The helpers here implement that contract for Python-served redirect
targets; :func:`render_redirect_page` returns an equivalent static page
for hosts that serve the target to a real browser.
"""

from __future__ import annotations

import html
import json
import re

from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import unquote


AUTH_PARAMS = ("code", "state", "session_state", "error")

_SEPARATORS = re.compile(r"[?&#]")


@dataclass(frozen=True)
class RedirectParams:
    """Parameters found in a redirect URL.

    Attributes
    ----------
    auth : dict[str, str]
        The authorization result (``code``, ``state``, ``session_state``,
        ``error``).
    app : dict[str, str]
        Every other parameter, left for the application.
    """

    auth: dict[str, str] = field(default_factory=dict)
    app: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RedirectDelivery:
    """Where and how a redirect target posts its message."""

    target: Literal["opener", "parent"]
    target_origin: str
    close_after: bool


def parse_redirect_url(url: str) -> RedirectParams:
    """Split ``url`` into authorization and application parameters.

    Pairs are delimited by ``?``, ``&`` or ``#``, so a result delivered in
    the fragment is found as well as one in the query. Segments without
    ``=`` are ignored; later duplicates win.

    Parameters
    ----------
    url : str
        The full URL of the redirect target.

    Returns
    -------
    RedirectParams
        The classified, percent-decoded parameters.
    """
    auth: dict[str, str] = {}
    app: dict[str, str] = {}
    for segment in _SEPARATORS.split(url)[1:]:
        key, sep, value = segment.partition("=")
        if not sep or not key:
            continue
        key = unquote(key)
        target = auth if key in AUTH_PARAMS else app
        target[key] = unquote(value)
    return RedirectParams(auth=auth, app=app)


def build_redirect_message(url: str) -> dict[str, Any]:
    """Build the message a redirect target posts for ``url``.

    Returns
    -------
    dict[str, Any]
        ``{"code", "state", "url"}``, plus ``"error"`` when the provider
        reported one. Missing values are ``None``.
    """
    params = parse_redirect_url(url)
    message: dict[str, Any] = {
        "code": params.auth.get("code"),
        "state": params.auth.get("state"),
        "url": url,
    }
    if params.auth.get("error"):
        message["error"] = params.auth["error"]
    return message


def delivery_for(opened_as_popup: bool, origin: str) -> RedirectDelivery:
    """Decide the delivery of a redirect message.

    A popup posts to its opener restricted to its own origin, then closes.
    A frame posts to its parent without an origin restriction.
    """
    if opened_as_popup:
        return RedirectDelivery(target="opener", target_origin=origin, close_after=True)
    return RedirectDelivery(target="parent", target_origin="*", close_after=False)


_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
<script>
(function () {{
  var AUTH = {auth_params};
  var href = window.location.href;
  var parts = href.split(/[?&#]/).slice(1);
  var auth = {{}};
  for (var i = 0; i < parts.length; i++) {{
    var idx = parts[i].indexOf('=');
    if (idx <= 0) continue;
    var key = decodeURIComponent(parts[i].slice(0, idx));
    if (AUTH.indexOf(key) >= 0) auth[key] = decodeURIComponent(parts[i].slice(idx + 1));
  }}
  var msg = {{code: auth.code || null, state: auth.state || null, url: href}};
  if (auth.error) msg.error = auth.error;
  if (window.opener) {{
    window.opener.postMessage(msg, window.location.origin);
    window.close();
  }} else if (window.parent !== window) {{
    window.parent.postMessage(msg, '*');
  }}
}})();
</script>
</body>
</html>"""


def render_redirect_page(title: str = "Signing in") -> str:
    """Render a static redirect-target page implementing this contract."""
    return _PAGE_TEMPLATE.format(
        title=html.escape(title),
        auth_params=json.dumps(list(AUTH_PARAMS)),
    )
