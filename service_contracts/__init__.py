"""Clean Up Bros quotation and service-contract lifecycle engine"""
