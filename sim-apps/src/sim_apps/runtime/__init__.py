"""Device runtimes (currently: simulators driven through simctl)."""
