"""
Campaign Service Contract Module

- data_contract.py: test data factories built on the service models
"""
