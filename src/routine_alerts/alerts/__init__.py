"""
Alert subsystem.

Components:
- risk_classifier.py: pure time-window risk classification
- push.py: push senders (FCM HTTP v1, log-only dev sender)
- dispatcher.py: best-effort notification dispatch
- alert_scheduler.py: periodic sweep orchestrating forecast -> classify -> dispatch -> marker
"""
