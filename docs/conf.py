# Sphinx configuration file

import os
import sys
sys.path.insert(0, os.path.abspath('../src'))

project = 'Rundown Engine'
copyright = '2025, Rundown contributors'
author = 'Rundown contributors'
release = '0.1.0'

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.intersphinx',
    'sphinx_autodoc_typehints',
]

exclude_patterns = ['_build']

html_theme = 'sphinx_rtd_theme'

# Pydantic models document their fields; validators and config stay out.
autodoc_default_options = {
    'members': True,
    'member-order': 'bysource',
    'exclude-members': 'model_config, model_fields, model_computed_fields',
}
autodoc_class_signature = 'separated'
always_document_param_types = False
typehints_use_signature_return = True

# Docstrings use Google-style sections (Raises:, Notes:, Environment variables:).
napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_custom_sections = ['Environment variables']

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pydantic': ('https://docs.pydantic.dev/latest', None),
}
