"""Content management module constants.

Pure constants, no imports from the rest of the app.
"""

# HTTP statuses worth retrying (rate limit + server side)
RETRY_STATUSES = {429, 500, 502, 503, 504}

# Fields the API sets itself; never sent back on update
SYSTEM_FIELDS = {
    "uid", "created_at", "updated_at", "created_by", "updated_by",
    "ACL", "locale", "publish_details", "tags_array",
}

# Reference field linking knowledge / history / analytics entries to their bot
BOT_REFERENCE_FIELD = "chatbot_config_reference"
