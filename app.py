from __future__ import annotations

from visit_export import create_app
from visit_export.config import configure_logging

configure_logging()
app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=app.config["DEBUG"])
