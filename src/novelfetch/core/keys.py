"""Shared event names and payload keys to avoid magic strings across novelfetch modules."""

from __future__ import annotations

# Event names published on a job's channel
K_EVENT_LOG = "log"
K_EVENT_NOVEL_METADATA = "novel-metadata"
K_EVENT_PROGRESS_UPDATE = "progress-update"
K_EVENT_NOVEL_READY = "novel-ready"
K_EVENT_ERROR = "error"
K_EVENT_BATCH_PROGRESS = "batch-progress"

# Payload keys (camelCase on the wire)
K_URL = "url"
K_TITLE = "title"
K_CONTENT = "content"
K_SUCCESS = "success"
K_MESSAGE = "message"
K_CHAPTERS = "chapters"
K_USER_AGENT = "userAgent"
K_TOTAL_CHAPTERS = "totalChapters"
K_COMPLETED = "completed"
K_TOTAL = "total"
K_JOB_ID = "jobId"
K_RESULTS = "results"
K_STATUS = "status"
K_ERROR = "error"
