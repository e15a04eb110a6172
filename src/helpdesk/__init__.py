"""
Helpdesk SLA Engine
===================

Service-level-agreement tracking for helpdesk tickets.

Modules:
- sla: Rule selection, business-hours due dates, breach tracking, extensions
- shared: Logging and HTTP middleware shared by all modules
- infrastructure: Database engine and session lifecycle
"""

__version__ = "1.0.0"
