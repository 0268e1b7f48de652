"""
RoastMyWallet Test Suite

- test_normalizer.py: CSV/PDF/image/receipt normalization and category coercion
- test_roast_service.py: tone selection and roast fallbacks
- test_quota.py: monthly reset, upload admission and tier gates
- test_aggregator.py: summaries, monthly series and financial advice
- test_annual_report.py: report facts and narrative fallbacks
- test_ingestion.py: categorize -> roast -> persist pipeline
- test_billing.py: webhook signatures and billing reconciliation
- test_api.py: HTTP endpoints end to end

Run all tests:
    pytest tests/

Run with verbose output:
    pytest tests/ -v
"""
