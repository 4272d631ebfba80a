"""HTML pages served during the browser leg of the sign-in flow."""

import html
import json
from typing import Any, Dict, Optional

TEAMS_SDK_URL = "https://statics.teams.cdn.office.net/sdk/v1.6.0/js/MicrosoftTeams.min.js"


def _script_tag(sdk_url: Optional[str]) -> str:
    if not sdk_url:
        return ""
    return f'<script src="{html.escape(sdk_url)}" crossorigin="anonymous"></script>'


def oauth_callback_page(verification_code: str, provider_name: str = "OAuth", sdk_url: Optional[str] = TEAMS_SDK_URL) -> str:
    """Page shown after a successful authorization.

    On chat clients whose SDK supports it, the verification code is handed
    back automatically; otherwise the instructions appear after five seconds
    and the user types the code into the chat.
    """
    name = html.escape(provider_name)
    code = html.escape(verification_code)
    return f"""<html>
<head>
    <title>{name}</title>
    <meta name="viewport" content="width=device-width, initial-scale=1.0" >
</head>
<body>
    <div id="instructionText" style="display: none">
        <div class="instruction-text">
            <p>You're almost there!</p>
            <p>To finish linking your account with {name}, type</p>
            <span class="verification-code">{code}</span>
            <p>in the chat window.</p>
        </div>
    </div>
    {_script_tag(sdk_url)}
    <script type="text/javascript">
        setTimeout(function () {{
            document.getElementById("instructionText").style.display = "initial";
        }}, 5000);
        if (window.microsoftTeams) {{
            microsoftTeams.initialize();
            microsoftTeams.authentication.notifySuccess({json.dumps(verification_code)});
        }}
    </script>
</body>
</html>"""


def oauth_error_page(reason: str, provider_name: str = "OAuth") -> str:
    return f"""<html>
<head>
    <title>{html.escape(provider_name)}</title>
    <meta name="viewport" content="width=device-width, initial-scale=1.0" >
</head>
<body>
    <div>
        <div>
            <p>Authorization Error</p>
            <p>{html.escape(reason)}</p>
        </div>
    </div>
</body>
</html>"""


def oauth_start_page(authorization_url_base: str, sdk_url: Optional[str] = TEAMS_SDK_URL) -> str:
    """Same-origin bounce page that forwards to the vendor's authorization URL.

    The target is taken from the ``authorizationUrl`` query parameter and is
    only followed when it starts with ``authorization_url_base``.
    """
    return f"""<html>
<head>
    <title>Sign In</title>
</head>
<body>
    {_script_tag(sdk_url)}
    <script type="text/javascript">
        if (window.microsoftTeams) {{
            microsoftTeams.initialize();
        }}
        var authorizationUrl = new URLSearchParams(location.search).get("authorizationUrl");
        var base = {json.dumps(authorization_url_base)};
        if (!authorizationUrl || authorizationUrl.indexOf(base) !== 0) {{
            if (window.microsoftTeams) {{
                microsoftTeams.authentication.notifyFailure("Invalid authorization url");
            }}
            document.body.appendChild(document.createTextNode("Invalid authorization url"));
        }} else {{
            window.location.assign(authorizationUrl);
        }}
    </script>
</body>
</html>"""


def is_valid_authorization_url(url: Optional[str], authorization_url_base: str) -> bool:
    """Server-side version of the start page's redirect check."""
    return bool(url) and bool(authorization_url_base) and url.startswith(authorization_url_base)


def _js(value: Any) -> str:
    # JSON embedded in a script block must not close the block
    return json.dumps(value).replace("</", "<\\/")


def configuration_form_page(
    template_name: str,
    return_to: str,
    data: Dict[str, Any],
    return_to_state: Optional[str] = None,
) -> str:
    """Confirmation form shown at the end of the configuration chain.

    Submitting it redirects the browser to ``return_to`` with
    ``status=success`` and the (possibly edited) base64 JSON ``data``.
    """
    name = html.escape(template_name or "")
    return f"""<html>
<head>
    <title>Configure {name}</title>
    <meta name="viewport" content="width=device-width, initial-scale=1.0" >
</head>
<body>
    <h3>Configure {name}</h3>
    <form id="configuration">
        <textarea id="data" rows="12" cols="80"></textarea>
        <p><button type="submit">Install</button></p>
    </form>
    <script type="text/javascript">
        var returnTo = {_js(return_to)};
        var state = {_js(return_to_state)};
        document.getElementById("data").value = JSON.stringify({_js(data)}, null, 2);
        document.getElementById("configuration").onsubmit = function (e) {{
            e.preventDefault();
            var data = btoa(JSON.stringify(JSON.parse(document.getElementById("data").value)));
            var location = returnTo + "?status=success&data=" + encodeURIComponent(data);
            if (state) {{
                location += "&state=" + encodeURIComponent(state);
            }}
            window.location.href = location;
        }};
    </script>
</body>
</html>"""


__all__ = [
    "TEAMS_SDK_URL",
    "oauth_callback_page",
    "oauth_error_page",
    "oauth_start_page",
    "is_valid_authorization_url",
    "configuration_form_page",
]
