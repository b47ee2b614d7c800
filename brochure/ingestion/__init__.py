"""
Extraction and AI stages for real-estate brochure PDFs.

Modules
-------
config       – Stage-specific settings (image limits, batch sizes, budgets …)
schemas      – Pydantic models for blocks, extracted / classified images, manifest
pdf_parser   – PDF text layer → lines → header / text / table blocks (PyMuPDF)
tables       – Heuristic + ruled (pdfplumber) tables, pricing / payment helpers
figures      – Embedded raster images → filtered, resized JPEGs → blob storage
classifier   – Vision-model image classification + section image manifest
mapper       – Text / tables → StructuredProject with partial reconstruction
localizer    – Target-locale translation and SEO metadata
quality      – Confidence scoring and data-quality checks
"""
