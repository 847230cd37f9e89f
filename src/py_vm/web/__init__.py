"""Optional Flask front end for the memory simulator (``pip install py-vm[web]``)."""
