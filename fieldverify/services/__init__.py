"""Domain services — lifecycle, capture, submission, audit and integrations."""
