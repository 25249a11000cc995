"""
Backend package for the LlamaTerm terminal chat client.

Modules:
    errors:    Exception taxonomy shared by the stores, relay and API layer.
    settings:  Key/value settings store persisted as JSON.
    storage:   Append-only JSONL message log and first-boot seeding.
    llm:       HTTP client for the configured LLM endpoint and reply decoding.
    relay:     Relay engine turning a user message into a persisted exchange.
    templates: HTML rendering for the terminal page.
    main:      FastAPI application wiring everything together.
"""
