"""PyVM — a simulated demand-paged virtual memory system with copy-on-write fork."""
