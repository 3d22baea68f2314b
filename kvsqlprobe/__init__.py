"""
Probe Azure Key Vault and Azure SQL access through Azure Identity credentials.

The package holds the decision logic behind the Flask app in ``app.py``:
credential resolution, secret retrieval, the SQL scalar probe, per-request
status aggregation and the one-time startup bootstrap.
"""

__version__ = "0.1.0"
