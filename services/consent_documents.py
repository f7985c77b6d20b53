from datetime import datetime
from html import escape

CONSENT_CONTENT = {
    "hiv_testing": {
        "title": "HIV Testing Consent Form",
        "content": [
            "I understand that I will be tested for HIV (Human Immunodeficiency Virus) as part of the donor screening process.",
            "I understand that this test is performed to ensure the safety of donated materials.",
            "I consent to have my blood sample tested for HIV antibodies and/or antigens.",
            "I understand that I will be notified of the test results and provided with appropriate counseling if needed.",
            "I understand that my test results will be kept confidential and only disclosed as required by law or for medical purposes.",
        ],
    },
    "bone_marrow_donation": {
        "title": "Bone Marrow Donation Consent Form",
        "content": [
            "I voluntarily consent to donate bone marrow for research and/or clinical purposes.",
            "I understand the bone marrow aspiration procedure, including the risks and benefits involved.",
            "I acknowledge that I have been informed about the procedure, which involves the collection of bone marrow from my hip bone under local anesthesia.",
            "I understand that common side effects may include soreness, bruising, and fatigue at the collection site.",
            "I agree to follow all pre- and post-procedure instructions provided by the medical staff.",
            "I understand that I may withdraw my consent at any time before the procedure.",
        ],
    },
    "genetic_testing": {
        "title": "Genetic Testing Consent Form",
        "content": [
            "I consent to genetic testing as part of the donor qualification process.",
            "I understand that genetic testing may reveal information about my health and genetic makeup.",
            "I agree that the genetic information collected may be used for research purposes.",
            "I understand that my genetic information will be kept confidential and secure.",
        ],
    },
    "research_use": {
        "title": "Research Use Authorization",
        "content": [
            "I authorize the use of my donated biological materials for research purposes.",
            "I understand that my donation may be used in various research studies.",
            "I agree that I will not receive compensation for any commercial products developed from my donation.",
            "I understand that my identity will remain confidential in any research publications.",
        ],
    },
    "hipaa_authorization": {
        "title": "HIPAA Authorization",
        "content": [
            "I authorize the disclosure of my protected health information as described in this form.",
            "I understand my rights under HIPAA regarding my health information.",
            "I understand that I may revoke this authorization at any time in writing.",
            "I understand that information disclosed may no longer be protected by federal privacy laws.",
        ],
    },
}

CONSENT_TYPES = tuple(CONSENT_CONTENT)


def _long_date(value) -> str:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return f"{value:%B} {value.day}, {value.year}"


def render_signed_consent(consent_type: str, donor: dict, signature_data_url: str, signed_at: datetime) -> str:
    """Standalone HTML record of one signed consent form."""
    content = CONSENT_CONTENT[consent_type]
    full_name = escape(f"{donor['first_name']} {donor['last_name']}")
    items = "".join(f"<li>{escape(item)}</li>" for item in content["content"])
    signed_time = f"{signed_at:%I:%M %p}".lstrip("0")

    return f"""<!DOCTYPE html>
<html>
<head>
  <title>{escape(content['title'])} - {full_name}</title>
  <style>
    body {{ font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 40px; }}
    h1 {{ color: #333; border-bottom: 2px solid #333; padding-bottom: 10px; }}
    .donor-info {{ background: #f5f5f5; padding: 15px; border-radius: 8px; margin: 20px 0; }}
    .content {{ line-height: 1.8; }}
    .signature-section {{ margin-top: 40px; border-top: 1px solid #ccc; padding-top: 20px; }}
    .signature-img {{ max-width: 300px; border-bottom: 1px solid #333; }}
  </style>
</head>
<body>
  <h1>{escape(content['title'])}</h1>
  <div class="donor-info">
    <p><strong>Donor Name:</strong> {full_name}</p>
    <p><strong>Donor ID:</strong> {escape(donor['donor_id'])}</p>
    <p><strong>Date of Birth:</strong> {_long_date(donor['birth_date'])}</p>
  </div>
  <div class="content">
    <ul>{items}</ul>
  </div>
  <div class="signature-section">
    <p><strong>Electronic Signature:</strong></p>
    <img src="{escape(signature_data_url, quote=True)}" class="signature-img" alt="Signature" />
    <p class="date"><strong>Signed on:</strong> {_long_date(signed_at)} at {signed_time}</p>
  </div>
</body>
</html>
"""
