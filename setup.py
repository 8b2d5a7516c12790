from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="saanify-society",
    version="1.0.0",
    author="Saanify",
    description="Saanify multi-tenant society ledger and loan management service",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=[
        'app',
        'admin_routes',
        'app_models',
        'build',
        'config',
        'data_isolation_helpers',
        'exports',
        'forms',
        'gunicorn_config',
        'health',
        'ledger',
        'security',
        'society_services',
        'subscriptions',
        'wsgi',
    ],
    include_package_data=True,
    install_requires=[
        'Flask>=2.3.3',
        'Flask-SQLAlchemy>=3.0.5',
        'Flask-WTF>=1.2.1',
        'python-dotenv>=1.0.0',
        'SQLAlchemy>=2.0.43',
        'WTForms>=3.0.1',
        'Werkzeug>=2.3.7',
        'gunicorn>=21.2.0',
        'psycopg2-binary>=2.9.9',
        'bcrypt>=4.0.1',
    ],
    extras_require={
        'test': [
            'pytest>=7.4',
        ],
    },
    python_requires='>=3.9',
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    entry_points={
        'console_scripts': [
            'saanify=wsgi:main',
        ],
    },
)
