"""Feature extraction, risk scoring and recommendations."""
