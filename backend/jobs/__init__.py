"""
Scheduled Jobs

Run from the backend directory:
    python -m jobs.sync_fio_payments [--days N | --since-last]
    python -m jobs.create_monthly_fees
    python -m jobs.report_unmatched_payments

Each job exits with status 1 when any per-item error occurred.
"""
