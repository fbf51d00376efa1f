"""
Foyer — Middleware Package
============================

What:  The Starlette adapter that mounts a MiddlewarePipeline, and the
       built-in stages the service runs on every request.

Stage order (main.build_pipeline):
    on_request:         request_id → rate_limit → access_timer → [route handler]
    on_before_response: access_log

    - request_id first: every later stage and log line can use the id
    - rate_limit next: rejected requests short-circuit before any work
    - access_log last: it sees the final status and headers
"""
