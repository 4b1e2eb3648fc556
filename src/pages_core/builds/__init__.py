"""Build lifecycle: state machine, task dispatch and timeout sweep."""
