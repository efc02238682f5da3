# Starter catalog for a fresh device (prices in rupiah).

SAMPLE_PRODUCTS = [
    {"name": "Indomie Goreng", "barcode": "8998866200301", "price": 3500, "cost": 2800, "stock": 120, "unit": "pcs", "category": "Makanan"},
    {"name": "Aqua 600ml", "barcode": "8886008101053", "price": 4000, "cost": 3000, "stock": 96, "unit": "botol", "category": "Minuman"},
    {"name": "Teh Botol Sosro 450ml", "barcode": "8992761111113", "price": 5500, "cost": 4200, "stock": 48, "unit": "botol", "category": "Minuman"},
    {"name": "Kopi Kapal Api Special Mix", "barcode": "8991002101630", "price": 1500, "cost": 1100, "stock": 200, "unit": "sachet", "category": "Minuman"},
    {"name": "Beras Pandan Wangi 5kg", "barcode": "8997012345678", "price": 78000, "cost": 69000, "stock": 15, "unit": "karung", "category": "Sembako"},
    {"name": "Minyak Goreng Bimoli 2L", "barcode": "8992628020019", "price": 38000, "cost": 33500, "stock": 24, "unit": "pouch", "category": "Sembako"},
    {"name": "Gula Pasir Gulaku 1kg", "barcode": "8993093665113", "price": 17500, "cost": 15000, "stock": 30, "unit": "pack", "category": "Sembako"},
    {"name": "Sabun Lifebuoy 85g", "barcode": "8999999036645", "price": 4500, "cost": 3400, "stock": 8, "unit": "pcs", "category": "Perlengkapan"},
]
