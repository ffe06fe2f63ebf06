"""Clients, projects, invoices, payments and notes."""
