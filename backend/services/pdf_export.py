"""
Contrat de Vente - Export PDF

Rendu en lecture seule du contrat VALIDÉ (parties, articles, paiement,
dates, confirmations). Retourne les octets du PDF.
"""

import io
from datetime import datetime
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from models.contract import ContractDocument, PartyInfo

PRODUITS_LABELS = {
    "robes": "Robes",
    "jupes": "Jupes",
    "chemises": "Chemises",
    "ensembles": "Ensembles",
    "autres": "Autres",
}

PAIEMENT_LABELS = {
    "mvola": "MVola",
    "orange_money": "Orange Money",
    "airtel_money": "Airtel Money",
}


class ExportNotAllowed(Exception):
    """Export demandé sur un contrat non validé"""
    pass


def pdf_filename(contract_id: str) -> str:
    return f"contrat-{contract_id[:8]}.pdf"


def _format_date(value: str) -> str:
    if not value:
        return "-"
    try:
        return datetime.fromisoformat(value).strftime("%d/%m/%Y")
    except ValueError:
        return value


def _p(text: str, style) -> Paragraph:
    return Paragraph(escape(text or "-"), style)


def _party_table(party: PartyInfo, style) -> Table:
    rows = [
        ["Nom complet", _p(party.nom_complet, style)],
        ["CIN", _p(party.cin, style)],
        ["Adresse", _p(party.adresse, style)],
        ["Téléphone", _p(party.telephone, style)],
    ]
    if party.is_distributor:
        rows.append(["Page / Boutique", _p(party.nom_page, style)])
    rows.append(["Vérification CIN", "Recto et verso vérifiés"])

    table = Table(rows, colWidths=[45 * mm, 120 * mm])
    table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.HexColor("#CBD5E1")),
    ]))
    return table


def render_contract_pdf(contract_id: str, doc: ContractDocument) -> bytes:
    """Raises ExportNotAllowed si le contrat n'est pas validé"""
    if not doc.is_locked:
        raise ExportNotAllowed(f"Contrat {contract_id} non validé: export impossible")

    buffer = io.BytesIO()
    pdf = SimpleDocTemplate(
        buffer, pagesize=A4,
        leftMargin=20 * mm, rightMargin=20 * mm,
        topMargin=18 * mm, bottomMargin=18 * mm,
        title=f"Contrat de Vente {contract_id[:8]}",
        author="Contrat de Vente en Ligne",
    )
    styles = getSampleStyleSheet()
    body = styles["BodyText"]

    produits = [label for key, label in PRODUITS_LABELS.items() if getattr(doc.produits, key)]
    paiements = [label for key, label in PAIEMENT_LABELS.items() if getattr(doc.paiement, key)]

    story = [
        Paragraph("Contrat de Vente en Ligne", styles["Title"]),
        Paragraph(f"Référence : {escape(contract_id)}", body),
        Spacer(1, 6 * mm),

        Paragraph("Fournisseuse (Couturière)", styles["Heading2"]),
        _party_table(doc.fournisseuse, body),
        Spacer(1, 4 * mm),

        Paragraph("Distributrice (Vendeuse en ligne)", styles["Heading2"]),
        _party_table(doc.distributrice, body),
        Spacer(1, 4 * mm),

        Paragraph("Conditions de la vente", styles["Heading2"]),
        _p(f"Lieu : {doc.lieu}", body),
        _p(f"Date : {doc.date}", body),
        _p(f"Articles : {', '.join(produits)}", body),
        _p(f"Paiement : {', '.join(paiements)}", body),
        Spacer(1, 4 * mm),

        Paragraph("Vérification croisée", styles["Heading2"]),
        _p(
            "La Fournisseuse confirme les informations de la Distributrice : "
            + ("oui" if doc.validation_fournisseuse else "non"),
            body,
        ),
        _p(
            "La Distributrice confirme les informations de la Fournisseuse : "
            + ("oui" if doc.validation_distributrice else "non"),
            body,
        ),
        Spacer(1, 4 * mm),

        _p(f"Créé le : {_format_date(doc.date_creation)}", body),
        _p(f"Validé le : {_format_date(doc.date_validation)}", body),
    ]

    pdf.build(story)
    return buffer.getvalue()
