"""
Paint sales assistant: a rule-based slot-filling chat engine for wholesale paint
inquiries written in code-switched Arabic/English.

The conversation core lives in ``sales_assistant.services``; ``sales_assistant.main``
wraps it in a FastAPI app. Importing this package does not create the app.
"""
