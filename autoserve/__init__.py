"""Engagement and credit engine for vehicle-service brokering."""
