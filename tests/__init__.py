"""HomeControl Test Suite

Test organization:
- unit/: Unit tests for individual modules
  - recurrence/: Next-occurrence resolution (rules, pause, skip, shifts)
  - mobile/: Quiet hours, Expo transport, routing, queue worker
  - tasks/: Task occurrence sync and rotation

Running tests:
    # All tests
    pytest

    # Specific module
    pytest tests/unit/mobile/
"""
