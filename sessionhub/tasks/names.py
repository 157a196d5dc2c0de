"""Registered task names, shared by the scheduler and the task modules."""

SEND_SESSION_REMINDER = "sessionhub.tasks.session_tasks.send_session_reminder"
RELEASE_UNPAID_SESSION = "sessionhub.tasks.session_tasks.release_unpaid_session"
CHECK_PAYMENT_EXPIRY = "sessionhub.tasks.session_tasks.check_payment_expiry"
PROVISION_MEETING = "sessionhub.tasks.session_tasks.provision_meeting"
START_SESSION = "sessionhub.tasks.session_tasks.start_session"
AUTO_TERMINATE_MEETING = "sessionhub.tasks.session_tasks.auto_terminate_meeting"
EXPIRE_RESCHEDULE = "sessionhub.tasks.session_tasks.expire_reschedule"
PROCESS_RECORDING = "sessionhub.tasks.transcript_tasks.process_recording"
RECONCILE_TRANSCRIPTS = "sessionhub.tasks.transcript_tasks.reconcile_transcripts"
RELEASE_MATURED_PAYMENTS = "sessionhub.tasks.balance_tasks.release_matured_payments"
