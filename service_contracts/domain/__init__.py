"""Bounded contexts: pricing, contracts, invoices, payments, webhooks"""
