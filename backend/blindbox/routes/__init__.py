# Overview: Flask blueprints exposing the ledger services as JSON endpoints.
