from pymongo import MongoClient
import os
from dotenv import load_dotenv

load_dotenv()

# connect to mongo cluster
mongo_client = MongoClient(os.getenv("MONGO_URI"))


# Access database
marrowlink_db = mongo_client[os.getenv("MONGO_DB_NAME", "marrowlink_db")]

# Pick a collection to operate on
users_collection = marrowlink_db["users"]

webform_submissions_collection = marrowlink_db["webform_submissions"]

screening_rules_collection = marrowlink_db["screening_rules"]

donors_collection = marrowlink_db["donors"]

donor_notes_collection = marrowlink_db["donor_notes"]

appointments_collection = marrowlink_db["appointments"]

donation_results_collection = marrowlink_db["donation_results"]

follow_ups_collection = marrowlink_db["follow_ups"]

payments_collection = marrowlink_db["payments"]

donor_documents_collection = marrowlink_db["donor_documents"]

donor_consents_collection = marrowlink_db["donor_consents"]

health_questionnaires_collection = marrowlink_db["health_questionnaires"]

voice_ai_settings_collection = marrowlink_db["voice_ai_settings"]

activity_logs_collection = marrowlink_db["activity_logs"]

counters_collection = marrowlink_db["counters"]

# File storage bucket (path -> binary content) for uploaded and signed documents
document_files_collection = marrowlink_db["document_files"]
