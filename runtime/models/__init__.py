"""
Pydantic models used by the LED-Sync runtime.

- led_models: state records, HTTP responses, payload normalization
"""
