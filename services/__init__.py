"""
Services Package

- image_service: Object API over the flat image functions
- transform_service: Colour-managed resize pipeline
- batch_service: Per-profile rendering of image files
"""
