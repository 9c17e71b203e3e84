# Overview: Ledger service layer; one module per component.
