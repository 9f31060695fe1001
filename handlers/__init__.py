"""
handlers/ - Presentation Layer
================================
Telegram bot handlers. Each handler receives updates from Telegram,
delegates to RecurringService, and sends the response back to the user.
No scheduling or business logic lives here.
"""
