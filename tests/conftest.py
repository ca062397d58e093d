"""
Shared fixtures.

Run locally:
    pytest tests/ -v
"""

import os
import sys

import pytest

# Allow imports from parent directory
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))


def _items(count: int) -> list:
    return [
        {
            "id": i,
            "name": f"Item {i}",
            "hsnSac": "8471" if i % 2 else "9983",
            "tax": "18%",
            "qty": "1 NOS",
            "ratePerItem": 118.0,
            "amount": 118.0,
        }
        for i in range(1, count + 1)
    ]


@pytest.fixture
def make_invoice():
    """Factory for InvoiceDocument with `items` line items; keyword overrides win."""
    from models import InvoiceDocument

    def factory(items: int = 3, **overrides) -> InvoiceDocument:
        data = {
            "invoiceNumber": "INV-42",
            "invoiceDate": "15 Mar 2025",
            "dueDate": "14 Apr 2025",
            "placeOfSupply": "29-KARNATAKA",
            "companyName": "Acme Traders",
            "companyGSTIN": "29ABCDE1234F1Z5",
            "companyAddress": "12 MG Road,\nBengaluru, Karnataka, India, 560001.",
            "companyPhone": "+91 98450 00000",
            "companyEmail": "billing@acme.in",
            "customerName": "TechStart Pvt Ltd",
            "customerPhone": "+91 80 4000 0000",
            "customerAddress": "45 Residency Road, Bengaluru",
            "items": _items(items),
            "additionalCharges": [],
            "taxBreakdown": [
                {
                    "hsnSac": "8471",
                    "taxableValue": 100.0,
                    "centralTaxRate": 9,
                    "centralTaxAmount": 9.0,
                    "stateUtTaxRate": 9,
                    "stateUtTaxAmount": 9.0,
                    "totalTaxAmount": 18.0,
                },
            ],
            "taxableAmount": 100.0 * items,
            "totalCentralTax": 9.0 * items,
            "totalStateTax": 9.0 * items,
            "totalTaxAmount": 18.0 * items,
            "totalAmount": 118.0 * items,
            "totalQuantity": items,
            "amountInWords": "INR One Hundred Eighteen Only. E & O.E",
            "paymentStatus": "Pending",
            "bankName": "State Bank of India",
            "accountNumber": "000123456789",
            "ifscCode": "SBIN0000001",
            "branch": "MG Road",
            "notes": "Goods once sold will not be taken back.",
        }
        data.update(overrides)
        return InvoiceDocument.model_validate(data)

    return factory
