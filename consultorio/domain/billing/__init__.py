"""Billing domain - facturación records and their payment state machine"""
