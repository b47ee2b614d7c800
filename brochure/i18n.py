"""User-facing strings for the target locale (``settings.target_locale``).

Unknown locales and missing keys fall back to English.
"""

from __future__ import annotations

from brochure.config import settings

LABELS: dict[str, dict[str, str]] = {
    "en": {
        # amenity categories
        "amenity.wellness": "Wellness & Fitness",
        "amenity.leisure": "Leisure & Entertainment",
        "amenity.outdoor": "Outdoor Spaces",
        "amenity.convenience": "Convenience & Services",
        "amenity.security": "Security & Privacy",
        "amenity.kids": "Kids & Family",
        "amenity.smart": "Smart Living",
        "amenity.other": "More Amenities",
        # payment plan
        "payment.down_payment": "On booking",
        "payment.down_payment.note": "Initial payment",
        "payment.during_construction": "During construction",
        "payment.during_construction.note": "Instalments",
        "payment.on_handover": "On handover",
        "payment.on_handover.note": "Final payment",
        "payment.post_handover": "Post handover",
        "payment.post_handover.note": "Deferred payments",
        # mini-site
        "site.about": "About the project",
        "site.features": "Amenities & features",
        "site.pricing": "Prices & units",
        "site.location": "Location",
        "site.from": "From {price} {currency}",
        "site.on_request": "On request",
        "site.image": "Project image",
        # progress
        "progress.extracting": "Extracting content from PDF...",
        "progress.extracted_text": "Extracted {pages} pages, {blocks} blocks",
        "progress.images": "Extracting images from PDF...",
        "progress.images_done": "Extracted {count} images",
        "progress.classifying": "Classifying images with AI vision...",
        "progress.classified": "Classified {count} images (hero: {hero})",
        "progress.classify_failed": "Image classification failed, continuing without it",
        "progress.pricing": "Identifying pricing tables...",
        "progress.extracted": "Found {count} pricing tables",
        "progress.mapping": "Mapping to structured data with AI...",
        "progress.mapping_failed": "Mapping failed: {error}",
        "progress.mapped": "Mapping complete (confidence: {confidence}%)",
        "progress.validating": "Translating and generating SEO in parallel...",
        "progress.merging": "Merging results...",
        "progress.saving": "Saving structured data...",
        "progress.publishing": "Creating project...",
        "progress.project_failed": "Processing complete, but project creation failed: {error}",
        "progress.mini_site": "Creating mini-site...",
        "progress.published": "Project and mini-site created! slug: {slug}",
        "progress.mini_site_failed": "Project created, but the mini-site failed: {error}",
        "progress.failed": "Error: {error}",
    },
    "he": {
        "amenity.wellness": "בריאות וספורט",
        "amenity.leisure": "פנאי ובידור",
        "amenity.outdoor": "שטחים פתוחים",
        "amenity.convenience": "נוחות ושירותים",
        "amenity.security": "ביטחון ופרטיות",
        "amenity.kids": "ילדים ומשפחה",
        "amenity.smart": "בית חכם",
        "amenity.other": "מתקנים נוספים",
        "payment.down_payment": "בעת הזמנה",
        "payment.down_payment.note": "תשלום ראשוני",
        "payment.during_construction": "במהלך הבנייה",
        "payment.during_construction.note": "תשלומים שוטפים",
        "payment.on_handover": "במסירה",
        "payment.on_handover.note": "תשלום סופי",
        "payment.post_handover": "לאחר מסירה",
        "payment.post_handover.note": "תשלומים נדחים",
        "site.about": "אודות הפרויקט",
        "site.features": "מתקנים ויתרונות",
        "site.pricing": "מחירים ויחידות",
        "site.location": "מיקום",
        "site.from": "החל מ-{price} {currency}",
        "site.on_request": "לפי בקשה",
        "site.image": "תמונת הפרויקט",
        "progress.extracting": "מחלץ תוכן מה-PDF...",
        "progress.extracted_text": "חולצו {pages} עמודים, {blocks} בלוקים",
        "progress.images": "מחלץ תמונות מה-PDF...",
        "progress.images_done": "חולצו {count} תמונות",
        "progress.classifying": "מסווג תמונות באמצעות AI Vision...",
        "progress.classified": "סווגו {count} תמונות (hero: {hero})",
        "progress.classify_failed": "סיווג תמונות נכשל - ממשיך ללא סיווג",
        "progress.pricing": "מזהה טבלאות מחירים...",
        "progress.extracted": "נמצאו {count} טבלאות מחירים",
        "progress.mapping": "ממפה לנתונים מובנים באמצעות AI...",
        "progress.mapping_failed": "שגיאה במיפוי: {error}",
        "progress.mapped": "מיפוי הושלם (רמת ביטחון: {confidence}%)",
        "progress.validating": "מתרגם ויוצר SEO (במקביל)...",
        "progress.merging": "משלב תוצאות...",
        "progress.saving": "שומר נתונים מובנים...",
        "progress.publishing": "יוצר פרויקט באתר...",
        "progress.project_failed": "העיבוד הושלם, אך יצירת הפרויקט נכשלה: {error}",
        "progress.mini_site": "יוצר מיני-סייט...",
        "progress.published": "הפרויקט והמיני-סייט נוצרו בהצלחה! slug: {slug}",
        "progress.mini_site_failed": "הפרויקט נוצר, אך יצירת המיני-סייט נכשלה: {error}",
        "progress.failed": "שגיאה: {error}",
    },
}


def t(key: str, locale: str | None = None, **values: object) -> str:
    """Look up *key* for *locale* and fill ``{placeholders}`` from *values*."""
    table = LABELS.get(locale or settings.target_locale, LABELS["en"])
    template = table.get(key) or LABELS["en"].get(key, key)
    return template.format(**values) if values else template
