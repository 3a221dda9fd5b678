"""Python chat client: conversation view state and network session."""
