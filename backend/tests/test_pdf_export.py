"""
Contrat de Vente - Export PDF
"""

import pytest

from models.contract import ContractDocument, Role
from services.contract_lifecycle import mark_validated
from services.pdf_export import ExportNotAllowed, pdf_filename, render_contract_pdf
from tests.fakes import complete_document

CONTRACT_ID = "3f2b8c1e-0d4a-4c6b-9a51-7e2f90d1c3aa"


class TestPdfExport:

    def test_validated_contract_renders_pdf(self):
        doc, _ = mark_validated(complete_document(), True)

        content = render_contract_pdf(CONTRACT_ID, doc)

        assert content.startswith(b"%PDF")
        assert len(content) > 1000
        print(f"✅ PDF généré: {len(content)} octets")

    def test_special_characters_escaped(self):
        doc, _ = mark_validated(complete_document(), True)
        party = doc.distributrice.model_copy(update={"nom_page": "Robes & Co <Tana>"})
        doc = doc.model_copy(update={"distributrice": party})

        assert render_contract_pdf(CONTRACT_ID, doc).startswith(b"%PDF")

    @pytest.mark.parametrize("doc", [
        ContractDocument(),
        complete_document(validated_by=(Role.FOURNISSEUSE,)),
        complete_document(),
    ])
    def test_not_validated_refused(self, doc):
        with pytest.raises(ExportNotAllowed):
            render_contract_pdf(CONTRACT_ID, doc)

    def test_filename(self):
        assert pdf_filename(CONTRACT_ID) == "contrat-3f2b8c1e.pdf"
