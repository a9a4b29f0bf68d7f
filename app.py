"""
Rentbook - Main Application
A simple local web app to keep track of properties, tenants and rent payments.
"""

import os
import json
import math
import uuid
from datetime import datetime, date
from flask import Flask, render_template, request, redirect, url_for, flash, jsonify, send_from_directory, abort
from werkzeug.utils import secure_filename

# Text extraction imports (document previews)
from pypdf import PdfReader
import pytesseract
from pdf2image import convert_from_path
from PIL import Image

from rent_schedule import (
    FREQUENCY_MONTHS,
    FREQUENCY_LABELS,
    calculate_contract_end_date,
    get_frequency_months,
    get_frequency_label,
    effective_monthly_rent,
    payable_amount,
    build_yearly_breakdown,
    terms_from_tenant,
)
from nepali_calendar import format_bs_date, bs_month_options

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

app = Flask(__name__)
app.secret_key = os.environ.get("RENTBOOK_SECRET_KEY", "dev-secret-key")  # Required for flash messages

# Data configuration. Storage helpers read these at call time.
app.config["DATA_FOLDER"] = os.environ.get("RENTBOOK_DATA_DIR", BASE_DIR)
app.config["UPLOAD_FOLDER"] = os.path.join(app.config["DATA_FOLDER"], "uploads")
app.config["MAX_CONTENT_LENGTH"] = 20 * 1024 * 1024

ALLOWED_EXTENSIONS = {"pdf", "png", "jpg", "jpeg", "doc", "docx"}
DOCUMENT_TYPES = {
    "contract": "Contract",
    "citizenship": "Citizenship",
    "tax_record": "Tax Record",
    "other": "Other",
}
PAYMENT_METHODS = {
    "cash": "Cash",
    "cheque": "Cheque",
    "bank_deposit": "Bank Deposit",
}
PAYMENT_SORT_FIELDS = ("period_start", "payment_date")

# Upper bounds for tenant contract input
MAX_CONTRACT_YEARS = 99
MAX_INCREMENT_PERCENT = 1000

# New-tenant form defaults
DEFAULT_TENANT_FORM = {
    "name": "",
    "company_name": "",
    "citizenship_number": "",
    "monthly_rent": "",
    "rent_frequency": "monthly",
    "contract_start_date": "",
    "contract_period_years": "5",
    "contract_period_months": "0",
    "rent_increment_percentage": "10",
    "rent_increment_interval_years": "2",
    "property_id": "",
}


@app.template_filter('format_money')
def format_money_filter(value):
    """Format a numeric value with commas for display (e.g. 185000 → 185,000)."""
    if value is None:
        return '—'
    try:
        num = float(value)
        if num == int(num):
            return f"{int(num):,}"
        return f"{num:,.2f}"
    except (ValueError, TypeError, OverflowError):
        return str(value)

@app.template_filter('format_date')
def format_date_filter(date_str):
    """Format an ISO date/datetime string to human-readable (e.g. '5 Feb 2026')."""
    if not date_str:
        return '—'
    try:
        dt = datetime.fromisoformat(str(date_str))
        return dt.strftime("%-d %b %Y")
    except (ValueError, TypeError):
        return str(date_str)

@app.template_filter('bs_date')
def bs_date_filter(date_str):
    """Bikram Sambat date with day (e.g. '२०८१ बैशाख ०१')."""
    if not date_str:
        return '—'
    return format_bs_date(date_str)

@app.template_filter('bs_month')
def bs_month_filter(date_str):
    """Bikram Sambat month and year only."""
    if not date_str:
        return '—'
    return format_bs_date(date_str, include_day=False)

app.jinja_env.globals["frequency_label"] = get_frequency_label
app.jinja_env.globals["DOCUMENT_TYPES"] = DOCUMENT_TYPES
app.jinja_env.globals["PAYMENT_METHODS"] = PAYMENT_METHODS


def allowed_file(filename):
    """Check if file has an allowed extension."""
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


# ----------------------------------------------------------------
# Document text extraction (best-effort previews)
# ----------------------------------------------------------------

def extract_text_from_image(file_path):
    """Extract text from image using OCR."""
    try:
        image = Image.open(file_path)
        text = pytesseract.image_to_string(image)
        result = text.strip() if text.strip() else None
        print(f"[DIAG] Image OCR extraction: {len(result) if result else 0} chars", flush=True)
        return result
    except Exception as e:
        print(f"Image OCR error: {e}")
        return None


def select_preview_page(page_texts):
    """Select the best page for preview, skipping stamp/cover pages."""
    if not page_texts:
        return None

    # Keywords indicating actual rental agreement content
    agreement_keywords = [
        "rent", "tenant", "landlord", "agreement",
        "lessor", "lessee", "premises", "owner"
    ]

    # Keywords indicating stamp/cover pages to skip
    skip_keywords = [
        "stamp duty", "e-stamp", "stamp", "certificate",
        "government", "registration"
    ]

    for page_text in page_texts:
        if not page_text:
            continue

        text_lower = page_text.lower()
        has_agreement_keyword = any(kw in text_lower for kw in agreement_keywords)
        has_skip_keyword = any(kw in text_lower for kw in skip_keywords)

        if has_agreement_keyword and not has_skip_keyword:
            return page_text

    # Fallback to first page
    return page_texts[0]


def extract_text_from_pdf(file_path):
    """Extract per-page text from a PDF, with OCR fallback for scanned documents.

    Returns:
        list of page strings (empty if extraction failed)
    """
    try:
        reader = PdfReader(file_path)
        page_texts = []
        for page in reader.pages:
            page_text = page.extract_text()
            page_texts.append(page_text.strip() if page_text else "")

        if any(page_texts):
            print(f"[DIAG] PDF direct extraction: {len(page_texts)} pages, "
                  f"{sum(len(t) for t in page_texts)} chars", flush=True)
            return page_texts

        # Fallback: OCR for scanned PDFs
        print("[DIAG] No embedded text found, attempting OCR...", flush=True)
        images = convert_from_path(file_path)
        page_texts = []
        for image in images:
            page_text = pytesseract.image_to_string(image)
            page_texts.append(page_text.strip() if page_text else "")

        print(f"[DIAG] OCR extraction: {len(page_texts)} pages", flush=True)
        return page_texts

    except Exception as e:
        print(f"PDF extraction error: {e}")
        return []


def extract_page_texts(file_path, mimetype):
    """Per-page text for preview selection, based on file type."""
    if mimetype == "application/pdf":
        return extract_text_from_pdf(file_path)
    elif mimetype in ["image/png", "image/jpeg"]:
        text = extract_text_from_image(file_path)
        return [text] if text else []
    return []


def create_preview(text, max_length=300):
    """Create a truncated preview of extracted text."""
    if not text:
        return None
    text = " ".join(text.split())
    if len(text) <= max_length:
        return text
    # Truncate at word boundary
    return text[:max_length].rsplit(" ", 1)[0] + "..."


# ----------------------------------------------------------------
# JSON storage
# ----------------------------------------------------------------
# Each collection lives in its own file in DATA_FOLDER:
#   properties.json  {"properties": [...]}
#   tenants.json     {"tenants": [...]}
#   payments.json    {"payments": [...]}
#   documents.json   {"documents": [...]}
#
# Deletes cascade: property -> tenants -> payments + documents.
# ----------------------------------------------------------------


def _data_path(filename):
    return os.path.join(app.config["DATA_FOLDER"], filename)


def _load_collection(filename, key):
    """Load one collection from its JSON file.

    Returns:
        dict: {key: [...]} structure, or {key: []} if the file is
              missing, empty or invalid
    """
    json_path = _data_path(filename)

    if not os.path.exists(json_path):
        return {key: []}

    try:
        with open(json_path, "r", encoding="utf-8") as f:
            content = f.read()

        if not content.strip():
            return {key: []}

        data = json.loads(content)
        if key not in data:
            data[key] = []
        return data

    except json.JSONDecodeError as e:
        print(f"[WARNING] {filename} contains invalid JSON: {e}")
        return {key: []}
    except IOError as e:
        print(f"[WARNING] Could not read {filename}: {e}")
        return {key: []}


def _save_collection(filename, data):
    """Atomically save a collection to its JSON file.

    Returns:
        bool: True on success, False on failure
    """
    json_path = _data_path(filename)
    tmp_path = json_path.rsplit(".", 1)[0] + ".tmp"

    try:
        os.makedirs(app.config["DATA_FOLDER"], exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())

        os.replace(tmp_path, json_path)
        return True
    except (IOError, OSError) as e:
        print(f"[WARNING] Failed to save {filename}: {e}")
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
        return False


def _load_all_properties():
    return _load_collection("properties.json", "properties")


def _save_properties_file(data):
    return _save_collection("properties.json", data)


def _load_all_tenants():
    return _load_collection("tenants.json", "tenants")


def _save_tenants_file(data):
    return _save_collection("tenants.json", data)


def _load_all_payments():
    return _load_collection("payments.json", "payments")


def _save_payments_file(data):
    return _save_collection("payments.json", data)


def _load_all_documents():
    return _load_collection("documents.json", "documents")


def _save_documents_file(data):
    return _save_collection("documents.json", data)


def _documents_folder():
    return os.path.join(app.config["UPLOAD_FOLDER"], "documents")


def _remove_document_file(document):
    """Delete a stored document's file from disk. Missing files are ignored."""
    file_path = document.get("file_path")
    if not file_path:
        return
    try:
        os.remove(os.path.join(app.config["UPLOAD_FOLDER"], file_path))
    except OSError:
        pass


# ----------------------------------------------------------------
# Form normalisation
# ----------------------------------------------------------------


def _normalize_string(value):
    """Normalize string: return None if empty/whitespace, otherwise stripped string."""
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped if stripped else None


def _validate_date(value):
    """Validate date in YYYY-MM-DD format. Returns valid string or None."""
    normalized = _normalize_string(value)
    if not normalized:
        return None
    try:
        datetime.strptime(normalized, "%Y-%m-%d")
        return normalized
    except ValueError:
        return None


def _validate_positive_number(value):
    """Validate a non-negative number. Returns float or None."""
    normalized = _normalize_string(value)
    if not normalized:
        return None
    try:
        num = float(normalized)
    except ValueError:
        return None
    return num if math.isfinite(num) and num >= 0 else None


def _validate_int(value):
    """Validate a non-negative whole number. Returns int or None."""
    normalized = _normalize_string(value)
    if not normalized:
        return None
    try:
        num = int(normalized)
    except ValueError:
        return None
    return num if num >= 0 else None


def _validate_month_year(value):
    """Validate a 'YYYY-MM' billing month. Returns date of the 1st or None."""
    normalized = _normalize_string(value)
    if not normalized:
        return None
    try:
        return datetime.strptime(normalized, "%Y-%m").date()
    except ValueError:
        return None


# ----------------------------------------------------------------
# Properties
# ----------------------------------------------------------------


def get_all_properties():
    """All properties, sorted by name."""
    properties = _load_all_properties().get("properties", [])
    return sorted(properties, key=lambda p: (p.get("name") or "").lower())


def get_property_by_id(property_id):
    if not property_id:
        return None
    for prop in _load_all_properties().get("properties", []):
        if prop.get("id") == property_id:
            return prop
    return None


def save_property(property_id, name, address=None):
    """Create a property, or update it when property_id is given.

    Returns:
        dict: {"success": True, "property": {...}} or
              {"success": False, "error": "..."}
    """
    name = _normalize_string(name)
    if not name:
        return {"success": False, "error": "Property name is required."}

    now = datetime.now().isoformat()
    data = _load_all_properties()
    properties = data.get("properties", [])

    if property_id:
        record = next((p for p in properties if p.get("id") == property_id), None)
        if record is None:
            return {"success": False, "error": "Property not found."}
        record["name"] = name
        record["address"] = _normalize_string(address)
        record["updated_at"] = now
    else:
        record = {
            "id": str(uuid.uuid4()),
            "name": name,
            "address": _normalize_string(address),
            "created_at": now,
            "updated_at": now,
        }
        properties.append(record)

    data["properties"] = properties
    if not _save_properties_file(data):
        return {"success": False, "error": "Failed to save property."}
    return {"success": True, "property": record}


def delete_property(property_id):
    """Delete a property and every tenant that belongs to it.

    Returns:
        dict: {"success": True, "tenants_deleted": int} or
              {"success": False, "error": "..."}
    """
    data = _load_all_properties()
    properties = data.get("properties", [])
    remaining = [p for p in properties if p.get("id") != property_id]
    if len(remaining) == len(properties):
        return {"success": False, "error": "Property not found."}

    tenant_ids = [t.get("id") for t in _load_all_tenants().get("tenants", [])
                  if t.get("property_id") == property_id]
    for tenant_id in tenant_ids:
        delete_tenant(tenant_id)
    if tenant_ids:
        print(f"[INFO] Deleted {len(tenant_ids)} tenant(s) with property {property_id}")

    data["properties"] = remaining
    if not _save_properties_file(data):
        return {"success": False, "error": "Failed to delete property."}
    return {"success": True, "tenants_deleted": len(tenant_ids)}


# ----------------------------------------------------------------
# Tenants
# ----------------------------------------------------------------


def get_all_tenants(property_id=None):
    """All tenants (optionally for one property), sorted by name."""
    tenants = _load_all_tenants().get("tenants", [])
    if property_id:
        tenants = [t for t in tenants if t.get("property_id") == property_id]
    return sorted(tenants, key=lambda t: (t.get("name") or "").lower())


def get_tenant_by_id(tenant_id):
    if not tenant_id:
        return None
    for tenant in _load_all_tenants().get("tenants", []):
        if tenant.get("id") == tenant_id:
            return tenant
    return None


def tenant_values_from_form(form):
    """Normalise tenant form input into stored tenant values.

    Contract period fields that fail to parse are stored as 0. The
    contract end date is always derived, never taken from the form.
    """
    rent_frequency = _normalize_string(form.get("rent_frequency"))
    if rent_frequency not in FREQUENCY_MONTHS:
        rent_frequency = "monthly"

    values = {
        "property_id": _normalize_string(form.get("property_id")),
        "name": _normalize_string(form.get("name")),
        "company_name": _normalize_string(form.get("company_name")),
        "citizenship_number": _normalize_string(form.get("citizenship_number")),
        "monthly_rent": _validate_positive_number(form.get("monthly_rent")),
        "rent_frequency": rent_frequency,
        "contract_start_date": _validate_date(form.get("contract_start_date")),
        "contract_period_years": _validate_int(form.get("contract_period_years")) or 0,
        "contract_period_months": _validate_int(form.get("contract_period_months")) or 0,
        "rent_increment_percentage": _validate_positive_number(form.get("rent_increment_percentage")) or 0,
        "rent_increment_interval_years": _validate_int(form.get("rent_increment_interval_years")) or 0,
    }
    end_date = calculate_contract_end_date(
        values["contract_start_date"],
        values["contract_period_years"],
        values["contract_period_months"],
    )
    values["contract_end_date"] = end_date.isoformat() if end_date else None
    return values


def _tenant_range_error(values):
    """Error message for out-of-range contract terms, or None."""
    duration_months = (values.get("contract_period_years") or 0) * 12 + (values.get("contract_period_months") or 0)
    if duration_months > MAX_CONTRACT_YEARS * 12:
        return f"Contract period cannot exceed {MAX_CONTRACT_YEARS} years."
    if values.get("contract_start_date") and values.get("contract_end_date") is None and duration_months:
        return "Contract end date is out of range."
    if (values.get("rent_increment_interval_years") or 0) > MAX_CONTRACT_YEARS:
        return f"Increment interval cannot exceed {MAX_CONTRACT_YEARS} years."
    if (values.get("rent_increment_percentage") or 0) > MAX_INCREMENT_PERCENT:
        return f"Increment percentage cannot exceed {MAX_INCREMENT_PERCENT}%."
    return None


def save_tenant(tenant_id, values):
    """Create a tenant, or update it when tenant_id is given.

    Returns:
        dict: {"success": True, "tenant": {...}} or
              {"success": False, "error": "..."}
    """
    required = ("name", "monthly_rent", "contract_start_date", "property_id")
    if any(values.get(field) is None for field in required):
        return {"success": False, "error": "Please fill in all required fields."}

    range_error = _tenant_range_error(values)
    if range_error:
        return {"success": False, "error": range_error}

    if not get_property_by_id(values["property_id"]):
        return {"success": False, "error": "Property not found."}

    now = datetime.now().isoformat()
    data = _load_all_tenants()
    tenants = data.get("tenants", [])

    if tenant_id:
        record = next((t for t in tenants if t.get("id") == tenant_id), None)
        if record is None:
            return {"success": False, "error": "Tenant not found."}
        record.update(values)
        record["updated_at"] = now
    else:
        record = {"id": str(uuid.uuid4()), **values, "created_at": now, "updated_at": now}
        tenants.append(record)

    data["tenants"] = tenants
    if not _save_tenants_file(data):
        return {"success": False, "error": "Failed to save tenant."}
    return {"success": True, "tenant": record}


def delete_tenant(tenant_id):
    """Delete a tenant with its payments, document records and files.

    Returns:
        dict: {"success": True} or {"success": False, "error": "..."}
    """
    data = _load_all_tenants()
    tenants = data.get("tenants", [])
    remaining = [t for t in tenants if t.get("id") != tenant_id]
    if len(remaining) == len(tenants):
        return {"success": False, "error": "Tenant not found."}

    payment_data = _load_all_payments()
    payment_data["payments"] = [p for p in payment_data.get("payments", [])
                                if p.get("tenant_id") != tenant_id]
    _save_payments_file(payment_data)

    doc_data = _load_all_documents()
    kept_docs = []
    for doc in doc_data.get("documents", []):
        if doc.get("tenant_id") == tenant_id:
            _remove_document_file(doc)
        else:
            kept_docs.append(doc)
    doc_data["documents"] = kept_docs
    _save_documents_file(doc_data)

    data["tenants"] = remaining
    if not _save_tenants_file(data):
        return {"success": False, "error": "Failed to delete tenant."}
    return {"success": True}


def get_tenant_schedule(tenant, today=None):
    """Derived rent schedule for one tenant, for display.

    Returns:
        dict with end_date, payable_amount, current_monthly_rent,
        frequency_months and yearly_breakdown. Values are None (and the
        breakdown empty) when the tenant has no usable start date.
    """
    today = today or date.today()
    terms = terms_from_tenant(tenant)
    if terms is None:
        return {
            "end_date": None,
            "payable_amount": None,
            "current_monthly_rent": None,
            "frequency_months": get_frequency_months((tenant or {}).get("rent_frequency")),
            "yearly_breakdown": [],
        }

    end_date = terms.contract_end_date
    return {
        "end_date": end_date.isoformat() if end_date else None,
        "payable_amount": payable_amount(terms),
        "current_monthly_rent": effective_monthly_rent(terms, today),
        "frequency_months": terms.billing_frequency_months,
        "yearly_breakdown": build_yearly_breakdown(terms),
    }


# ----------------------------------------------------------------
# Rent payments
# ----------------------------------------------------------------


def get_all_payments():
    return _load_all_payments().get("payments", [])


def get_payment_by_id(payment_id):
    if not payment_id:
        return None
    for payment in get_all_payments():
        if payment.get("id") == payment_id:
            return payment
    return None


def get_payments_for_tenant(tenant_id):
    """Payments for one tenant, newest period first."""
    matching = [p for p in get_all_payments() if p.get("tenant_id") == tenant_id]
    matching.sort(key=lambda p: p.get("period_start") or "", reverse=True)
    return matching


def calculate_period_end(period_start, frequency):
    """Last day of the billing period that starts on period_start."""
    return calculate_contract_end_date(period_start, 0, get_frequency_months(frequency))


def default_payment_amount(tenant, period_start):
    """Amount due for a billing period starting on period_start."""
    terms = terms_from_tenant(tenant)
    if terms is None:
        monthly = _validate_positive_number((tenant or {}).get("monthly_rent")) or 0
        return monthly * get_frequency_months((tenant or {}).get("rent_frequency"))
    return payable_amount(terms, period_start)


def save_payment(payment_id, form, today=None):
    """Create or update a rent payment from form input.

    The billing period runs from the first of the chosen month for as many
    months as the tenant's rent frequency. A blank amount defaults to the
    payable amount for that period.

    Returns:
        dict: {"success": True, "payment": {...}} or
              {"success": False, "error": "..."}
    """
    today = today or date.today()
    tenant_id = _normalize_string(form.get("tenant_id"))
    period_start = _validate_month_year(form.get("period_month_year"))
    if not tenant_id or period_start is None:
        return {"success": False, "error": "Please fill in all required fields."}

    tenant = get_tenant_by_id(tenant_id)
    if not tenant:
        return {"success": False, "error": "Tenant not found."}

    raw_amount = _normalize_string(form.get("amount"))
    if raw_amount is None:
        amount = default_payment_amount(tenant, period_start)
    else:
        amount = _validate_positive_number(raw_amount)
        if amount is None:
            return {"success": False, "error": "Amount must be a valid number."}

    payment_method = _normalize_string(form.get("payment_method")) or "cash"
    if payment_method not in PAYMENT_METHODS:
        return {"success": False, "error": "Invalid payment method."}

    is_cheque = payment_method == "cheque"
    period_end = calculate_period_end(period_start, tenant.get("rent_frequency"))

    values = {
        "tenant_id": tenant_id,
        "period_start": period_start.isoformat(),
        "period_end": period_end.isoformat(),
        "amount": amount,
        "paid": True,
        "payment_date": _validate_date(form.get("payment_date")) or today.isoformat(),
        "payment_method": payment_method,
        "cheque_number": _normalize_string(form.get("cheque_number")) if is_cheque else None,
        "issue_bank": _normalize_string(form.get("issue_bank")) if is_cheque else None,
        "deposit_bank": (_normalize_string(form.get("deposit_bank"))
                         if payment_method in ("cheque", "bank_deposit") else None),
        "notes": _normalize_string(form.get("notes")),
    }

    now = datetime.now().isoformat()
    data = _load_all_payments()
    payments = data.get("payments", [])

    if payment_id:
        record = next((p for p in payments if p.get("id") == payment_id), None)
        if record is None:
            return {"success": False, "error": "Payment not found."}
        record.update(values)
        record["updated_at"] = now
    else:
        record = {"id": str(uuid.uuid4()), **values, "created_at": now, "updated_at": now}
        payments.append(record)

    data["payments"] = payments
    if not _save_payments_file(data):
        return {"success": False, "error": "Failed to save payment."}
    return {"success": True, "payment": record}


def toggle_payment_status(payment_id, today=None):
    """Flip a payment between paid and unpaid.

    Marking paid stamps today's date; marking unpaid clears it.
    """
    today = today or date.today()
    data = _load_all_payments()
    for payment in data.get("payments", []):
        if payment.get("id") == payment_id:
            payment["paid"] = not payment.get("paid")
            payment["payment_date"] = today.isoformat() if payment["paid"] else None
            payment["updated_at"] = datetime.now().isoformat()
            if not _save_payments_file(data):
                return {"success": False, "error": "Failed to update payment status."}
            return {"success": True, "payment": payment}
    return {"success": False, "error": "Payment not found."}


def delete_payment(payment_id):
    data = _load_all_payments()
    payments = data.get("payments", [])
    remaining = [p for p in payments if p.get("id") != payment_id]
    if len(remaining) == len(payments):
        return {"success": False, "error": "Payment not found."}
    data["payments"] = remaining
    if not _save_payments_file(data):
        return {"success": False, "error": "Failed to delete payment."}
    return {"success": True}


def attach_tenant_names(payments):
    """Add _tenant_name and _property_name view fields to payment dicts."""
    tenants = {t.get("id"): t for t in _load_all_tenants().get("tenants", [])}
    properties = {p.get("id"): p for p in _load_all_properties().get("properties", [])}
    for payment in payments:
        tenant = tenants.get(payment.get("tenant_id")) or {}
        prop = properties.get(tenant.get("property_id")) or {}
        payment["_tenant_name"] = tenant.get("name") or "Unknown Tenant"
        payment["_property_name"] = prop.get("name")
    return payments


# ── Rent tracking view state ────────────────────────────────────────────
# Filter and sort live in the query string, never in module globals.
# ─────────────────────────────────────────────────────────────────────────


def parse_payment_view(args):
    """Build the rent-tracking view state from request args.

    Returns:
        dict: {"tenant": "all" | tenant_id,
               "sort": "period_start" | "payment_date",
               "order": "asc" | "desc"}
    """
    sort = args.get("sort")
    order = args.get("order")
    return {
        "tenant": args.get("tenant") or "all",
        "sort": sort if sort in PAYMENT_SORT_FIELDS else "payment_date",
        "order": order if order in ("asc", "desc") else "desc",
    }


def apply_payment_view(payments, view):
    """Filter and sort payments for the rent-tracking list.

    Sorting by payment date always lists unpaid payments last.
    """
    result = list(payments)
    if view["tenant"] != "all":
        result = [p for p in result if p.get("tenant_id") == view["tenant"]]

    reverse = view["order"] == "desc"
    if view["sort"] == "payment_date":
        paid = [p for p in result if p.get("paid")]
        unpaid = [p for p in result if not p.get("paid")]
        paid.sort(key=lambda p: p.get("payment_date") or "", reverse=reverse)
        return paid + unpaid

    result.sort(key=lambda p: p.get("period_start") or "", reverse=reverse)
    return result


# ----------------------------------------------------------------
# Documents
# ----------------------------------------------------------------


def get_documents_for_tenant(tenant_id, document_type=None):
    """Documents for one tenant, newest first."""
    docs = [d for d in _load_all_documents().get("documents", [])
            if d.get("tenant_id") == tenant_id]
    if document_type:
        docs = [d for d in docs if d.get("document_type") == document_type]
    docs.sort(key=lambda d: d.get("uploaded_at") or "", reverse=True)
    return docs


def get_document_by_id(document_id):
    if not document_id:
        return None
    for doc in _load_all_documents().get("documents", []):
        if doc.get("id") == document_id:
            return doc
    return None


def save_tenant_document(tenant_id, document_type, file):
    """Save an uploaded file to uploads/documents/tenant-{id}/{type}/.

    Files are never overwritten. A text preview is extracted on a
    best-effort basis and never blocks the upload.

    Args:
        tenant_id: UUID string of the tenant
        document_type: one of DOCUMENT_TYPES
        file: Werkzeug FileStorage object from form upload

    Returns:
        tuple: (record, None) on success,
               (None, error_message) on failure
    """
    if not file or not file.filename:
        return None, "No file provided"

    if not allowed_file(file.filename):
        return None, "File type not allowed"

    if document_type not in DOCUMENT_TYPES:
        return None, "Invalid document type"

    original_name = secure_filename(file.filename)
    if not original_name:
        return None, "Invalid filename"

    document_id = str(uuid.uuid4())
    relative_dir = os.path.join("documents", f"tenant-{tenant_id}", document_type)
    target_dir = os.path.join(app.config["UPLOAD_FOLDER"], relative_dir)
    os.makedirs(target_dir, exist_ok=True)

    safe_name = f"{document_id}_{original_name}"
    full_path = os.path.join(target_dir, safe_name)
    if os.path.exists(full_path):
        return None, "File already exists"

    file.save(full_path)

    mimetype = file.mimetype
    page_texts = extract_page_texts(full_path, mimetype)
    preview = create_preview(select_preview_page(page_texts))

    record = {
        "id": document_id,
        "tenant_id": tenant_id,
        "document_type": document_type,
        "file_name": original_name,
        "file_path": os.path.join(relative_dir, safe_name),
        "file_size": os.path.getsize(full_path),
        "mime_type": mimetype,
        "extracted_preview": preview,
        "uploaded_at": datetime.now().isoformat(),
    }

    data = _load_all_documents()
    data["documents"].append(record)
    if not _save_documents_file(data):
        _remove_document_file(record)
        return None, "Failed to save document record"

    return record, None


def delete_document(document_id):
    data = _load_all_documents()
    docs = data.get("documents", [])
    target = next((d for d in docs if d.get("id") == document_id), None)
    if target is None:
        return {"success": False, "error": "Document not found."}

    data["documents"] = [d for d in docs if d.get("id") != document_id]
    if not _save_documents_file(data):
        return {"success": False, "error": "Failed to delete document."}
    _remove_document_file(target)
    return {"success": True, "document": target}


def format_file_size(size):
    """Human-readable byte count (e.g. 2048 → '2 KB')."""
    try:
        size = float(size)
    except (TypeError, ValueError):
        return "0 Bytes"
    if size <= 0:
        return "0 Bytes"
    for unit in ("Bytes", "KB", "MB"):
        if size < 1024:
            return f"{round(size, 2):g} {unit}"
        size /= 1024
    return f"{round(size, 2):g} GB"

app.jinja_env.filters["file_size"] = format_file_size


# ----------------------------------------------------------------
# Dashboard
# ----------------------------------------------------------------


def format_days_left(days):
    """Countdown label like '1 year, 2 months, 3 days'."""
    if days <= 0:
        return "Expired"

    years = days // 365
    remaining_days = days % 365
    months = remaining_days // 30
    final_days = remaining_days % 30

    parts = []
    if years > 0:
        parts.append(f"{years} year{'s' if years > 1 else ''}")
    if months > 0:
        parts.append(f"{months} month{'s' if months > 1 else ''}")
    if final_days > 0:
        parts.append(f"{final_days} day{'s' if final_days > 1 else ''}")
    return ", ".join(parts)


def calculate_renewal_status(tenant, today=None):
    """Contract renewal countdown and urgency for one tenant.

    Returns:
        dict with end_date, days_remaining, urgency, message - or None if
        no end date can be calculated
    """
    today = today or date.today()
    terms = terms_from_tenant(tenant)
    end_date = terms.contract_end_date if terms else None
    if end_date is None:
        return None

    days_remaining = (end_date - today).days

    # Urgency thresholds: 30, 60 days
    if days_remaining <= 0:
        urgency = "critical"
    elif days_remaining <= 30:
        urgency = "urgent"
    elif days_remaining <= 60:
        urgency = "warning"
    else:
        urgency = "none"

    return {
        "end_date": end_date.isoformat(),
        "days_remaining": days_remaining,
        "urgency": urgency,
        "message": format_days_left(days_remaining),
    }


def build_dashboard_summary(today=None):
    """Aggregate counts, expected revenue, renewals and payments.

    Expected monthly revenue sums each active tenant's effective monthly
    rent on `today`.
    """
    today = today or date.today()
    properties = _load_all_properties().get("properties", [])
    tenants = _load_all_tenants().get("tenants", [])
    payments = get_all_payments()

    monthly_revenue = 0.0
    upcoming_renewals = []
    for tenant in tenants:
        terms = terms_from_tenant(tenant)
        if terms is None:
            continue
        end_date = terms.contract_end_date
        if terms.contract_start_date <= today and (end_date is None or end_date >= today):
            monthly_revenue += effective_monthly_rent(terms, today)

        status = calculate_renewal_status(tenant, today)
        if status and status["days_remaining"] > 0:
            upcoming_renewals.append({**tenant, "_renewal": status})

    upcoming_renewals.sort(key=lambda t: t["_renewal"]["days_remaining"])

    recent_payments = sorted(payments, key=lambda p: p.get("created_at") or "", reverse=True)[:5]
    overdue_payments = [
        p for p in payments
        if not p.get("paid") and (p.get("period_end") or "9999-12-31") < today.isoformat()
    ]

    return {
        "total_properties": len(properties),
        "total_tenants": len(tenants),
        "monthly_revenue": monthly_revenue,
        "upcoming_renewals": upcoming_renewals,
        "recent_payments": attach_tenant_names(recent_payments),
        "overdue_payments": attach_tenant_names(overdue_payments),
    }


# ----------------------------------------------------------------
# Routes
# ----------------------------------------------------------------


@app.route("/")
def index():
    """Display the dashboard."""
    summary = build_dashboard_summary()
    property_names = {p.get("id"): p.get("name") for p in get_all_properties()}
    return render_template("dashboard.html",
                           summary=summary,
                           property_names=property_names)


@app.route("/properties")
def properties_page():
    properties = get_all_properties()
    tenant_counts = {}
    for tenant in _load_all_tenants().get("tenants", []):
        pid = tenant.get("property_id")
        tenant_counts[pid] = tenant_counts.get(pid, 0) + 1
    editing = get_property_by_id(request.args.get("edit"))
    return render_template("properties.html",
                           properties=properties,
                           tenant_counts=tenant_counts,
                           editing=editing)


@app.route("/properties/save", methods=["POST"])
def save_property_route():
    property_id = _normalize_string(request.form.get("property_id"))
    result = save_property(property_id,
                           request.form.get("name"),
                           request.form.get("address"))
    if result.get("success"):
        flash("Property updated successfully" if property_id else "Property added successfully", "success")
    else:
        flash(result.get("error", "An unexpected error occurred."), "error")
    return redirect(url_for("properties_page"))


@app.route("/properties/<property_id>/delete", methods=["POST"])
def delete_property_route(property_id):
    result = delete_property(property_id)
    if result.get("success"):
        flash("Property deleted successfully", "success")
    else:
        flash(result.get("error", "An unexpected error occurred."), "error")
    return redirect(url_for("properties_page"))


@app.route("/tenants")
def tenants_page():
    property_filter = request.args.get("property_id")
    tenants = get_all_tenants(property_filter)
    properties = get_all_properties()
    property_names = {p.get("id"): p.get("name") for p in properties}
    for tenant in tenants:
        tenant["_schedule"] = get_tenant_schedule(tenant)
    return render_template("tenants.html",
                           tenants=tenants,
                           properties=properties,
                           property_names=property_names,
                           property_filter=property_filter)


def _render_tenant_form(form_data, tenant_id=None):
    """Render the tenant form with a live end-date/payable preview."""
    preview_end = calculate_contract_end_date(
        _validate_date(form_data.get("contract_start_date")),
        _validate_int(form_data.get("contract_period_years")) or 0,
        _validate_int(form_data.get("contract_period_months")) or 0,
    )
    monthly = _validate_positive_number(form_data.get("monthly_rent")) or 0
    preview_payable = monthly * get_frequency_months(form_data.get("rent_frequency"))
    return render_template("tenant_form.html",
                           form_data=form_data,
                           tenant_id=tenant_id,
                           properties=get_all_properties(),
                           frequencies=FREQUENCY_LABELS,
                           preview_end=preview_end.isoformat() if preview_end else None,
                           preview_payable=preview_payable)


@app.route("/tenants/new")
def new_tenant():
    form_data = dict(DEFAULT_TENANT_FORM)
    form_data["property_id"] = request.args.get("property_id", "")
    return _render_tenant_form(form_data)


@app.route("/tenants/<tenant_id>/edit")
def edit_tenant(tenant_id):
    tenant = get_tenant_by_id(tenant_id)
    if not tenant:
        flash("Tenant not found.", "error")
        return redirect(url_for("tenants_page"))
    form_data = {key: "" if tenant.get(key) is None else str(tenant.get(key))
                 for key in DEFAULT_TENANT_FORM}
    return _render_tenant_form(form_data, tenant_id=tenant_id)


@app.route("/tenants/save", methods=["POST"])
def save_tenant_route():
    tenant_id = _normalize_string(request.form.get("tenant_id"))
    values = tenant_values_from_form(request.form)
    result = save_tenant(tenant_id, values)

    if not result.get("success"):
        flash(result.get("error", "An unexpected error occurred."), "error")
        form_data = {key: request.form.get(key, "") for key in DEFAULT_TENANT_FORM}
        return _render_tenant_form(form_data, tenant_id=tenant_id), 400

    flash("Tenant updated successfully" if tenant_id else "Tenant added successfully", "success")
    return redirect(url_for("tenant_detail", tenant_id=result["tenant"]["id"]))


@app.route("/tenants/<tenant_id>")
def tenant_detail(tenant_id):
    tenant = get_tenant_by_id(tenant_id)
    if not tenant:
        flash("Tenant not found.", "error")
        return redirect(url_for("tenants_page"))
    return render_template("tenant_detail.html",
                           tenant=tenant,
                           property=get_property_by_id(tenant.get("property_id")),
                           schedule=get_tenant_schedule(tenant),
                           documents=get_documents_for_tenant(tenant_id),
                           payments=get_payments_for_tenant(tenant_id))


@app.route("/tenants/<tenant_id>/delete", methods=["POST"])
def delete_tenant_route(tenant_id):
    result = delete_tenant(tenant_id)
    if result.get("success"):
        flash("Tenant deleted successfully", "success")
    else:
        flash(result.get("error", "An unexpected error occurred."), "error")
    return redirect(url_for("tenants_page"))


@app.route("/api/tenants/<tenant_id>/schedule")
def tenant_schedule_api(tenant_id):
    """JSON rent schedule for one tenant."""
    tenant = get_tenant_by_id(tenant_id)
    if not tenant:
        return jsonify({"success": False, "error": "tenant_not_found"}), 404
    return jsonify({"success": True, "tenant_id": tenant_id, **get_tenant_schedule(tenant)})


@app.route("/payments")
def payments_page():
    """Rent tracking list with tenant filter and sort."""
    view = parse_payment_view(request.args)
    payments = apply_payment_view(get_all_payments(), view)
    return render_template("payments.html",
                           payments=attach_tenant_names(payments),
                           tenants=get_all_tenants(),
                           view=view)


def _render_payment_form(form_data, payment_id=None):
    options = bs_month_options()
    selected = form_data.get("period_month_year")
    if selected and all(o["value"] != selected for o in options):
        # Editing a payment for a month outside the default window
        period_start = _validate_month_year(selected)
        label = format_bs_date(period_start, include_day=False) if period_start else selected
        options.insert(0, {"value": selected, "label": f"{label} ({selected[:4]})"})
    return render_template("payment_form.html",
                           form_data=form_data,
                           payment_id=payment_id,
                           tenants=get_all_tenants(),
                           month_options=options)


@app.route("/payments/new")
def new_payment():
    today = date.today()
    tenant_id = request.args.get("tenant_id", "")
    period = request.args.get("period") or today.strftime("%Y-%m")
    amount = ""
    tenant = get_tenant_by_id(tenant_id)
    period_start = _validate_month_year(period)
    if tenant and period_start:
        amount = f"{default_payment_amount(tenant, period_start):g}"
    form_data = {
        "tenant_id": tenant_id,
        "period_month_year": period,
        "payment_date": today.isoformat(),
        "amount": amount,
        "payment_method": "cash",
        "cheque_number": "",
        "issue_bank": "",
        "deposit_bank": "",
        "notes": "",
    }
    return _render_payment_form(form_data)


@app.route("/payments/<payment_id>/edit")
def edit_payment(payment_id):
    payment = get_payment_by_id(payment_id)
    if not payment:
        flash("Payment not found.", "error")
        return redirect(url_for("payments_page"))
    form_data = {
        "tenant_id": payment.get("tenant_id", ""),
        "period_month_year": (payment.get("period_start") or "")[:7],
        "payment_date": payment.get("payment_date") or date.today().isoformat(),
        "amount": f"{payment.get('amount') or 0:g}",
        "payment_method": payment.get("payment_method") or "cash",
        "cheque_number": payment.get("cheque_number") or "",
        "issue_bank": payment.get("issue_bank") or "",
        "deposit_bank": payment.get("deposit_bank") or "",
        "notes": payment.get("notes") or "",
    }
    return _render_payment_form(form_data, payment_id=payment_id)


@app.route("/payments/save", methods=["POST"])
def save_payment_route():
    payment_id = _normalize_string(request.form.get("payment_id"))
    result = save_payment(payment_id, request.form)
    if not result.get("success"):
        flash(result.get("error", "An unexpected error occurred."), "error")
        return _render_payment_form(dict(request.form), payment_id=payment_id), 400
    flash("Payment updated successfully" if payment_id else "Payment added successfully", "success")
    return redirect(url_for("payments_page"))


@app.route("/payments/<payment_id>")
def payment_detail(payment_id):
    payment = get_payment_by_id(payment_id)
    if not payment:
        flash("Payment not found.", "error")
        return redirect(url_for("payments_page"))
    attach_tenant_names([payment])
    return render_template("payment_detail.html", payment=payment)


@app.route("/payments/<payment_id>/toggle", methods=["POST"])
def toggle_payment_route(payment_id):
    result = toggle_payment_status(payment_id)
    if not result.get("success"):
        flash(result.get("error", "An unexpected error occurred."), "error")
    # Only redirect back within this app
    next_url = request.form.get("next") or ""
    if not next_url.startswith("/") or next_url.startswith("//"):
        next_url = url_for("payments_page")
    return redirect(next_url)


@app.route("/payments/<payment_id>/delete", methods=["POST"])
def delete_payment_route(payment_id):
    result = delete_payment(payment_id)
    if result.get("success"):
        flash("Rent payment deleted successfully", "success")
    else:
        flash(result.get("error", "An unexpected error occurred."), "error")
    return redirect(url_for("payments_page"))


@app.route("/tenants/<tenant_id>/documents")
def tenant_documents(tenant_id):
    tenant = get_tenant_by_id(tenant_id)
    if not tenant:
        flash("Tenant not found.", "error")
        return redirect(url_for("tenants_page"))
    active_type = request.args.get("type")
    if active_type not in DOCUMENT_TYPES:
        active_type = "contract"
    return render_template("documents.html",
                           tenant=tenant,
                           active_type=active_type,
                           documents=get_documents_for_tenant(tenant_id, active_type),
                           counts={t: len(get_documents_for_tenant(tenant_id, t)) for t in DOCUMENT_TYPES})


@app.route("/tenants/<tenant_id>/documents", methods=["POST"])
def upload_documents(tenant_id):
    """Handle one or more document uploads for a tenant."""
    tenant = get_tenant_by_id(tenant_id)
    if not tenant:
        flash("Tenant not found.", "error")
        return redirect(url_for("tenants_page"))

    document_type = request.form.get("document_type", "contract")
    files = [f for f in request.files.getlist("files") if f and f.filename]
    if not files:
        flash("No file selected", "error")
        return redirect(url_for("tenant_documents", tenant_id=tenant_id, type=document_type))

    uploaded = 0
    for file in files:
        record, error = save_tenant_document(tenant_id, document_type, file)
        if error:
            flash(f"{file.filename}: {error}", "error")
        else:
            uploaded += 1

    if uploaded:
        flash(f"{uploaded} document{'s' if uploaded != 1 else ''} uploaded successfully", "success")
    return redirect(url_for("tenant_documents", tenant_id=tenant_id, type=document_type))


@app.route("/documents/<document_id>/view")
def view_document(document_id):
    """Serve a stored document inline. Path traversal prevented by send_from_directory."""
    doc = get_document_by_id(document_id)
    if not doc:
        abort(404)
    return send_from_directory(app.config["UPLOAD_FOLDER"],
                               doc["file_path"],
                               mimetype=doc.get("mime_type"),
                               download_name=doc.get("file_name"))


@app.route("/documents/<document_id>/delete", methods=["POST"])
def delete_document_route(document_id):
    result = delete_document(document_id)
    if result.get("success"):
        doc = result["document"]
        flash("Document deleted successfully", "success")
        return redirect(url_for("tenant_documents",
                                tenant_id=doc.get("tenant_id"),
                                type=doc.get("document_type")))
    flash(result.get("error", "An unexpected error occurred."), "error")
    return redirect(url_for("tenants_page"))


if __name__ == "__main__":
    # Run locally on port 5000
    # debug=True auto-reloads when you change code
    app.run(debug=True, port=5000)
