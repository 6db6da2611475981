"""Domain logic for recurring payment schedules."""
