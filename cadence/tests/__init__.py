"""
Tests Module: Unit and Integration Tests

Test Coverage:
    - Session store, state machine and search
    - Timers and mailboxes
    - Scheduler properties on a virtual clock
    - Engine facade, API routes and CLI
    - HTTP collaborators over httpx.MockTransport
    - Configuration, metrics and logging
"""
