# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

import contextlib
import os
import secrets

import anyio

from coreason_oidc import CoreasonOIDCError, make_microsoft_client


async def main() -> None:
    """
    Walks through a login against the Microsoft identity platform.

    Set MS_APP_ID, MS_CLIENT_SECRET and MS_REDIRECT_URI, open the printed URL,
    sign in, then paste the full URL the browser was redirected to.
    """
    app_id = os.environ["MS_APP_ID"]
    redirect_uri = os.environ.get("MS_REDIRECT_URI", "https://localhost:8443/callback")

    async with await make_microsoft_client(app_id, os.environ.get("MS_CLIENT_SECRET"), redirect_uri) as client:
        # Both values must be kept for the callback, usually in the user's session
        nonce = secrets.token_urlsafe(16)
        state = secrets.token_urlsafe(16)

        url = await client.get_auth_url(nonce, state, scope="profile email")
        print(f">>> Open this URL in a browser:\n{url}\n")

        callback = input(">>> Paste the redirect URL: ").strip()
        try:
            identity = await client.handle_callback(callback, expected_state=state, expected_nonce=nonce)
        except CoreasonOIDCError as e:
            print(f">>> Login failed: {type(e).__name__}: {e}")
            return

        print(f">>> Logged in: {identity}")
        print(f">>> Name claim: {identity.claims.get('name')}")


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        anyio.run(main)
