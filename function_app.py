
import os
import logging
import azure.durable_functions as df

from src.function_blueprints import (
    durable_approval,
    http_approval_callback,
    http_campaigns,
    http_posts,
)

# Use DFApp as the root app so Durable triggers/activities are correctly registered
app = df.DFApp()


def _configure_logging() -> None:
    lvl = (os.getenv("AZURE_SDK_LOG_LEVEL") or "").upper()
    if lvl:
        level = getattr(logging, lvl, logging.INFO)
        logging.getLogger("azure").setLevel(level)
        logging.getLogger("azure.cosmos").setLevel(level)
    app_lvl = (os.getenv("CAMPAIGNS_LOG_LEVEL") or "INFO").upper()
    logging.getLogger("campaigns").setLevel(getattr(logging, app_lvl, logging.INFO))


_configure_logging()

app.register_functions(http_campaigns.bp)
app.register_functions(http_posts.bp)
app.register_functions(http_approval_callback.bp)
app.register_functions(durable_approval.bp)
