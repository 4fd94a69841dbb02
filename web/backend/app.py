"""
ScanVault Web API
=================
Deployment entry point.

    gunicorn web.backend.app:application
    flask --app web.backend.app create-admin admin@example.com

Requires SCANVAULT_FILE_SECRET and SCANVAULT_TOKEN_SECRET; set
SCANVAULT_SCANNER=module:factory to enable uploads.
"""

import os

from scanvault.web.app import create_app_from_env

app = create_app_from_env()
application = app

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
