from __future__ import annotations

import contextvars

# Correlation id of the classification call running on this thread, blank if none
call_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("call_id", default="")
