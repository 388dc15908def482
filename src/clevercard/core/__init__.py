"""Core business logic.

Modules:
- errors: exception hierarchy
- models: records, create payloads, session and AppState
- state: StateContainer holding the current AppState
- session_manager: sign-in / sign-up / sign-out and session restore
- store: loading and creating classes, students and report cards
- register_parser: register text into student rows
- selectors: dashboard summary, filters, register row matching
- insights: AI insights for report cards
"""

__all__ = [
    "errors",
    "models",
    "state",
    "session_manager",
    "store",
    "register_parser",
    "selectors",
    "insights",
]
